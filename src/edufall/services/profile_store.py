"""Key-value stores for persisted player profiles."""
import copy
import logging
from typing import Dict, Optional

import httpx

from ..models.database import Database, DatabaseError

logger = logging.getLogger(__name__)


class ProfileStoreError(Exception):
    """Raised when a profile cannot be loaded or saved."""
    pass


class ProfileStore:
    async def load(self, player_id: str) -> Optional[Dict]:
        raise NotImplementedError

    async def save(self, player_id: str, profile: Dict) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        pass


class InMemoryProfileStore(ProfileStore):
    """Profiles kept in a dict, for development and tests."""

    def __init__(self, profiles: Optional[Dict[str, Dict]] = None):
        self.profiles: Dict[str, Dict] = profiles or {}
        self.fail_saves = 0  # number of upcoming saves to fail
        self.save_count = 0

    async def load(self, player_id: str) -> Optional[Dict]:
        profile = self.profiles.get(player_id)
        return copy.deepcopy(profile) if profile is not None else None

    async def save(self, player_id: str, profile: Dict) -> bool:
        self.save_count += 1
        if self.fail_saves > 0:
            self.fail_saves -= 1
            raise ProfileStoreError(f"Simulated save failure for {player_id}")
        self.profiles[player_id] = copy.deepcopy(profile)
        return True


class DatabaseProfileStore(ProfileStore):
    def __init__(self, database: Database):
        self.database = database

    async def load(self, player_id: str) -> Optional[Dict]:
        try:
            return await self.database.get_profile(player_id)
        except DatabaseError as e:
            raise ProfileStoreError(str(e))

    async def save(self, player_id: str, profile: Dict) -> bool:
        try:
            await self.database.save_profile(player_id, profile.get("username", ""), profile)
            return True
        except DatabaseError as e:
            raise ProfileStoreError(str(e))


class HttpProfileStore(ProfileStore):
    """Profiles behind a REST service: ``GET``/``PUT {base_url}/profiles/{id}``."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def load(self, player_id: str) -> Optional[Dict]:
        try:
            response = await self.client.get(f"/profiles/{player_id}")
        except httpx.TimeoutException:
            raise ProfileStoreError(f"Timed out loading profile {player_id}")
        except httpx.HTTPError as e:
            raise ProfileStoreError(f"Error loading profile {player_id}: {e}")

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ProfileStoreError(
                f"Profile service returned {response.status_code} for {player_id}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProfileStoreError(f"Invalid profile payload for {player_id}: {e}")

    async def save(self, player_id: str, profile: Dict) -> bool:
        try:
            response = await self.client.put(f"/profiles/{player_id}", json=profile)
        except httpx.TimeoutException:
            raise ProfileStoreError(f"Timed out saving profile {player_id}")
        except httpx.HTTPError as e:
            raise ProfileStoreError(f"Error saving profile {player_id}: {e}")

        if response.status_code not in (200, 201, 204):
            raise ProfileStoreError(
                f"Profile service returned {response.status_code} saving {player_id}"
            )
        return True

    async def close(self) -> None:
        await self.client.aclose()

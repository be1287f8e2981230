"""Team challenge mode: teams share lives and race through a question set."""
import asyncio
import logging
import random
from typing import Dict, List, Optional, Union

from ..config.settings import TEAM_CONFIG
from ..models.multiplayer import Team, TeamChallenge, TeamMember
from ..services.activity_registry import ActivityKind, PlayerActivityRegistry
from ..services.event_bus import EventBus, EventType
from ..services.question_registry import QuestionRegistry
from ..services.scheduler import Scheduler
from ..utils.ids import generate_id

logger = logging.getLogger(__name__)

LOBBY_REF = "team_lobby"


class TeamManager:
    def __init__(
        self,
        scheduler: Scheduler,
        bus: EventBus,
        activity: PlayerActivityRegistry,
        questions: QuestionRegistry,
        rng: Optional[random.Random] = None,
        config: Dict = TEAM_CONFIG
    ):
        self.scheduler = scheduler
        self.bus = bus
        self.activity = activity
        self.questions = questions
        self.rng = rng or random.Random()
        self.config = config

        # player_id -> {"username": str, "team": Optional[int]}
        self._lobby: Dict[str, Dict] = {}
        self._host_id: Optional[str] = None
        self._challenges: Dict[str, TeamChallenge] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lobby
    # ------------------------------------------------------------------

    async def join_lobby(self, player_id: str, username: str) -> bool:
        async with self._lock:
            if player_id in self._lobby:
                return True
            if not self.activity.claim(player_id, ActivityKind.TEAM_LOBBY, LOBBY_REF):
                return False
            self._lobby[player_id] = {"username": username, "team": None}
            if not self._host_id:
                self._host_id = player_id
            logger.info(f"{username} joined team lobby")
            await self._broadcast_lobby()
            return True

    async def leave_lobby(self, player_id: str) -> bool:
        async with self._lock:
            entry = self._lobby.pop(player_id, None)
            if entry is None:
                return False
            self.activity.release(player_id, ActivityKind.TEAM_LOBBY, LOBBY_REF)
            if self._host_id == player_id:
                self._host_id = next(iter(self._lobby), None)
            logger.info(f"{entry['username']} left team lobby")
            await self._broadcast_lobby()
            return True

    async def join_team(self, player_id: str, team_id: Union[int, str]) -> bool:
        async with self._lock:
            entry = self._lobby.get(player_id)
            if not entry:
                return False
            try:
                team_index = int(team_id)
            except (TypeError, ValueError):
                return False
            if not 0 <= team_index < len(self.config["team_names"]):
                return False

            entry["team"] = team_index
            logger.info(f"{entry['username']} joined team {self.config['team_names'][team_index]}")
            await self._broadcast_lobby()
            return True

    def team_info(self) -> Dict[str, List]:
        teams = [
            {"id": i, "name": name, "color": self.config["team_colors"][i], "members": []}
            for i, name in enumerate(self.config["team_names"])
        ]
        unassigned = []
        for entry in self._lobby.values():
            if entry["team"] is None:
                unassigned.append(entry["username"])
            else:
                teams[entry["team"]]["members"].append(entry["username"])
        return {"teams": teams, "unassigned": unassigned}

    def _active_lobby_teams(self) -> List[int]:
        counts: Dict[int, int] = {}
        for entry in self._lobby.values():
            if entry["team"] is not None:
                counts[entry["team"]] = counts.get(entry["team"], 0) + 1
        return sorted(t for t, count in counts.items() if count >= self.config["min_players_per_team"])

    def can_start(self) -> bool:
        return len(self._active_lobby_teams()) >= 2

    async def _broadcast_lobby(self) -> None:
        info = self.team_info()
        can_start = self.can_start()
        for player_id in self._lobby:
            await self.bus.publish(
                player_id,
                EventType.TEAM_LOBBY_UPDATE,
                is_host=player_id == self._host_id,
                can_start=can_start,
                **info
            )

    # ------------------------------------------------------------------
    # Challenge
    # ------------------------------------------------------------------

    async def start_challenge(self, player_id: str) -> bool:
        async with self._lock:
            if player_id != self._host_id:
                logger.warning(f"Player {player_id} is not the team lobby host")
                return False
            active_teams = self._active_lobby_teams()
            if len(active_teams) < 2:
                logger.warning("Need at least 2 teams with players")
                return False

            challenge_id = generate_id("team")
            teams = {
                index: Team(
                    id=index,
                    name=self.config["team_names"][index],
                    color=self.config["team_colors"][index],
                    lives=self.config["starting_lives"],
                )
                for index in active_teams
            }
            for pid, entry in self._lobby.items():
                team = teams.get(entry["team"])
                if team:
                    team.members[pid] = TeamMember(player_id=pid, username=entry["username"])
                    self.activity.transfer(pid, ActivityKind.TEAM_LOBBY, ActivityKind.TEAM_CHALLENGE, challenge_id)
                else:
                    self.activity.release(pid, ActivityKind.TEAM_LOBBY, LOBBY_REF)

            challenge = TeamChallenge(
                id=challenge_id,
                teams=teams,
                questions=[
                    self.questions.generate_with_fallback(self.config["subject"], self.config["difficulty"])
                    for _ in range(self.config["questions_per_challenge"])
                ],
                started_at=self.scheduler.now(),
            )
            self._challenges[challenge_id] = challenge
            self._lobby.clear()
            self._host_id = None

            for team in teams.values():
                await self.bus.broadcast(
                    list(team.members),
                    EventType.TEAM_CHALLENGE_START,
                    team_name=team.name,
                    team_color=team.color,
                    starting_lives=team.lives,
                    total_questions=len(challenge.questions),
                )
                await self._send_question(challenge, team)
            logger.info(f"Team challenge {challenge_id} started with {len(teams)} teams")
            return True

    async def _send_question(self, challenge: TeamChallenge, team: Team) -> None:
        question = challenge.questions[team.question_index]
        await self.bus.broadcast(
            list(team.members),
            EventType.QUESTION,
            question_number=team.question_index + 1,
            total_questions=len(challenge.questions),
            options=question.answer_options(self.rng),
            **question.to_payload()
        )

    async def submit_answer(self, player_id: str, answer) -> Optional[bool]:
        """Validate against the team's current question."""
        async with self._lock:
            found = self._playable(player_id)
            if not found:
                return None
            challenge, team = found
            correct = self.questions.validate_answer(challenge.questions[team.question_index], answer)
            await self._apply_answer(challenge, team, player_id, correct)
            return correct

    async def record_answer(self, player_id: str, correct: bool) -> bool:
        """Record an answer the engine already judged."""
        async with self._lock:
            found = self._playable(player_id)
            if not found:
                return False
            challenge, team = found
            await self._apply_answer(challenge, team, player_id, correct)
            return True

    def _playable(self, player_id: str):
        challenge = self._challenge_for(player_id)
        if not challenge or not challenge.active:
            return None
        team = challenge.team_for(player_id)
        if not team or not team.alive or team.question_index >= len(challenge.questions):
            return None
        return challenge, team

    async def _apply_answer(self, challenge: TeamChallenge, team: Team, player_id: str, correct: bool) -> None:
        member = team.members[player_id]
        if correct:
            member.correct_answers += 1
            team.combo += 1
            multiplier = min(1 + team.combo * self.config["combo_step"], self.config["max_combo_multiplier"])
            points = round(self.config["points_per_correct"] * multiplier)
            team.total_score += points
            member.contribution_score += points
        else:
            member.wrong_answers += 1
            team.combo = 0
            team.lives -= 1
            if not team.alive:
                await self._eliminate(team)

        team.question_index += 1
        await self._broadcast_progress(challenge)

        if await self._check_end(challenge):
            return
        if team.alive and team.question_index < len(challenge.questions):
            await self._send_question(challenge, team)

    async def _eliminate(self, team: Team) -> None:
        for member in team.members.values():
            member.active = False
        await self.bus.broadcast(list(team.members), EventType.TEAM_ELIMINATED, team_name=team.name)
        logger.info(f"Team {team.name} eliminated")

    async def _broadcast_progress(self, challenge: TeamChallenge) -> None:
        standings = challenge.results()
        for team in challenge.teams.values():
            await self.bus.broadcast(
                list(team.members),
                EventType.TEAM_PROGRESS,
                my_team=team.summary(),
                standings=standings,
            )

    async def _check_end(self, challenge: TeamChallenge) -> bool:
        alive = [team for team in challenge.teams.values() if team.alive]
        if len(alive) <= 1:
            await self._end(challenge, alive[0] if alive else None)
            return True
        if all(team.question_index >= len(challenge.questions) for team in alive):
            await self._end(challenge, None)
            return True
        return False

    async def _end(self, challenge: TeamChallenge, winner: Optional[Team]) -> None:
        challenge.active = False
        if winner is None:
            # No last team standing, highest score wins
            ranked = sorted(challenge.teams.values(), key=lambda t: -t.total_score)
            winner = ranked[0] if ranked else None
        challenge.winning_team = winner.id if winner else None

        await self.bus.broadcast(
            challenge.member_ids(),
            EventType.TEAM_CHALLENGE_END,
            winner=winner.name if winner else "No winner",
            winning_team=challenge.winning_team,
            results=challenge.results(),
        )
        for player_id in challenge.member_ids():
            self.activity.release(player_id, ActivityKind.TEAM_CHALLENGE, challenge.id)
        logger.info(f"Team challenge {challenge.id} ended, winner: {winner.name if winner else 'none'}")

        self.scheduler.call_later(self.config["cleanup_delay"], self._on_cleanup, challenge.id,
                                  name=f"team_cleanup_{challenge.id}")

    async def _on_cleanup(self, challenge_id: str) -> None:
        async with self._lock:
            self._challenges.pop(challenge_id, None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _challenge_for(self, player_id: str) -> Optional[TeamChallenge]:
        activity = self.activity.current(player_id)
        if not activity or activity.kind != ActivityKind.TEAM_CHALLENGE:
            return None
        return self._challenges.get(activity.ref)

    def get_challenge(self, challenge_id: str) -> Optional[TeamChallenge]:
        return self._challenges.get(challenge_id)

    def get_player_challenge(self, player_id: str) -> Optional[TeamChallenge]:
        return self._challenge_for(player_id)

    @property
    def host_id(self) -> Optional[str]:
        return self._host_id

    async def handle_disconnect(self, player_id: str) -> None:
        if player_id in self._lobby:
            await self.leave_lobby(player_id)
            return
        async with self._lock:
            challenge = self._challenge_for(player_id)
            if not challenge:
                return
            team = challenge.team_for(player_id)
            if team:
                team.members[player_id].active = False
            self.activity.release(player_id, ActivityKind.TEAM_CHALLENGE, challenge.id)

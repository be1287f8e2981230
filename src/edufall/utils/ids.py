"""Identifier helpers."""
import random
import uuid
from typing import Optional

from ..config.settings import TOURNAMENT_CONFIG


def generate_id(prefix: str = "") -> str:
    ident = uuid.uuid4().hex[:12]
    return f"{prefix}_{ident}" if prefix else ident


def generate_invite_code(rng: Optional[random.Random] = None) -> str:
    """Random invite code without ambiguous characters (no I, O, 0, 1)."""
    rng = rng or random
    alphabet = TOURNAMENT_CONFIG["invite_code_alphabet"]
    return ''.join(rng.choice(alphabet) for _ in range(TOURNAMENT_CONFIG["invite_code_length"]))

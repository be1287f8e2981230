"""Tournament, match and challenge models."""
from dataclasses import dataclass, field, asdict, fields
from enum import Enum
from typing import Dict, List, Optional, Set

from .question import Question


class TournamentType(str, Enum):
    QUICK_MATCH = "quick-match"
    BRACKET = "bracket"
    LEAGUE = "league"
    CHALLENGE = "challenge"


class TournamentStatus(str, Enum):
    WAITING = "waiting"
    STARTING = "starting"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TournamentVisibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class MatchStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    STALLED = "stalled"
    COMPLETED = "completed"


class RoundStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class QuickMatchStatus(str, Enum):
    WAITING = "waiting"
    COUNTDOWN = "countdown"
    PLAYING = "playing"
    RESULTS = "results"


class ChallengeStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


REWARD_TYPES = ("cosmetic", "title", "badge", "xp", "currency")


def _filter_fields(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls) if f.init}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class TournamentReward:
    placement: int
    type: str
    description: str
    item_id: Optional[str] = None
    amount: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TournamentReward":
        return cls(**_filter_fields(cls, data))


@dataclass
class TournamentConfig:
    name: str
    type: TournamentType
    subject: str
    difficulty: str
    visibility: TournamentVisibility = TournamentVisibility.PUBLIC
    questions_per_match: int = 5
    min_participants: int = 2
    max_participants: int = 2
    is_official: bool = False
    description: Optional[str] = None
    category: Optional[str] = None
    time_per_question: Optional[float] = None
    start_delay: Optional[float] = None
    invite_code: Optional[str] = None
    rewards: List[TournamentReward] = field(default_factory=list)

    def __post_init__(self):
        self.type = TournamentType(self.type)
        self.visibility = TournamentVisibility(self.visibility)
        self.rewards = [
            r if isinstance(r, TournamentReward) else TournamentReward.from_dict(r)
            for r in self.rewards or []
        ]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        data["visibility"] = self.visibility.value
        data["rewards"] = [r.to_dict() for r in self.rewards]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TournamentConfig":
        return cls(**_filter_fields(cls, data))


@dataclass
class TournamentParticipant:
    """Per-tournament (or per-match) player stats, reset for each event."""
    player_id: str
    username: str
    joined_at: int = 0
    current_score: int = 0
    correct_answers: int = 0
    wrong_answers: int = 0
    average_response_time: float = 0.0
    streak: int = 0
    best_streak: int = 0
    matches_played: int = 0
    matches_won: int = 0
    eliminated: bool = False
    final_placement: Optional[int] = None
    is_connected: bool = True
    last_active_at: int = 0

    @property
    def answered(self) -> int:
        return self.correct_answers + self.wrong_answers

    def record_answer(self, correct: bool, points: int, response_time: float) -> None:
        """Apply one answer: counts, streaks, score and the running response average."""
        if correct:
            self.correct_answers += 1
            self.current_score += points
            self.streak += 1
            self.best_streak = max(self.best_streak, self.streak)
        else:
            self.wrong_answers += 1
            self.streak = 0
        count = self.answered
        self.average_response_time = (
            (self.average_response_time * (count - 1) + response_time) / count
        )

    def record_miss(self) -> None:
        """An unanswered question counts as wrong without touching the average."""
        self.wrong_answers += 1
        self.streak = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TournamentParticipant":
        return cls(**_filter_fields(cls, data))


@dataclass
class TournamentMatch:
    id: str
    tournament_id: str
    round_number: int
    match_number: int
    participant1_id: Optional[str] = None
    participant2_id: Optional[str] = None
    status: MatchStatus = MatchStatus.PENDING
    winner_id: Optional[str] = None
    participant1_score: int = 0
    participant2_score: int = 0
    current_question_index: int = 0
    total_questions: int = 0
    started_at: Optional[int] = None
    completed_at: Optional[int] = None

    # Live state, never persisted
    current_question: Optional[Question] = field(default=None, repr=False, compare=False)
    question_started_at: Optional[float] = field(default=None, repr=False, compare=False)
    answered: Set[str] = field(default_factory=set, repr=False, compare=False)
    stall_attempts: int = field(default=0, repr=False, compare=False)

    def __post_init__(self):
        self.status = MatchStatus(self.status)

    @property
    def participants(self) -> List[str]:
        return [p for p in (self.participant1_id, self.participant2_id) if p]

    @property
    def is_complete(self) -> bool:
        return self.status == MatchStatus.COMPLETED

    def has_player(self, player_id: str) -> bool:
        return player_id in (self.participant1_id, self.participant2_id)

    def add_score(self, player_id: str, points: int) -> None:
        if player_id == self.participant1_id:
            self.participant1_score += points
        elif player_id == self.participant2_id:
            self.participant2_score += points

    def loser_id(self) -> Optional[str]:
        if not self.winner_id:
            return None
        for player_id in self.participants:
            if player_id != self.winner_id:
                return player_id
        return None

    def complete(self, winner_id: Optional[str], completed_at: Optional[int] = None) -> bool:
        """Set the winner. Returns False if the match was already completed."""
        if self.status == MatchStatus.COMPLETED:
            return False
        self.winner_id = winner_id
        self.status = MatchStatus.COMPLETED
        self.completed_at = completed_at
        self.current_question = None
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "round_number": self.round_number,
            "match_number": self.match_number,
            "participant1_id": self.participant1_id,
            "participant2_id": self.participant2_id,
            "status": self.status.value,
            "winner_id": self.winner_id,
            "participant1_score": self.participant1_score,
            "participant2_score": self.participant2_score,
            "current_question_index": self.current_question_index,
            "total_questions": self.total_questions,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TournamentMatch":
        return cls(**{k: v for k, v in _filter_fields(cls, data).items()
                      if k not in ("current_question", "question_started_at",
                                   "answered", "stall_attempts")})


@dataclass
class TournamentRound:
    round_number: int
    matches: List[TournamentMatch] = field(default_factory=list)
    status: RoundStatus = RoundStatus.PENDING
    started_at: Optional[int] = None
    completed_at: Optional[int] = None

    def __post_init__(self):
        self.status = RoundStatus(self.status)

    @property
    def is_complete(self) -> bool:
        return all(match.is_complete for match in self.matches)

    def winners(self) -> List[Optional[str]]:
        return [match.winner_id for match in self.matches]

    def to_dict(self) -> dict:
        return {
            "round_number": self.round_number,
            "matches": [m.to_dict() for m in self.matches],
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TournamentRound":
        return cls(
            round_number=data["round_number"],
            matches=[TournamentMatch.from_dict(m) for m in data.get("matches", [])],
            status=data.get("status", RoundStatus.PENDING),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )


@dataclass
class Tournament:
    id: str
    config: TournamentConfig
    creator_id: str
    creator_username: str
    status: TournamentStatus = TournamentStatus.WAITING
    participants: Dict[str, TournamentParticipant] = field(default_factory=dict)
    rounds: List[TournamentRound] = field(default_factory=list)
    current_round: int = 0
    created_at: int = 0
    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    winner_id: Optional[str] = None
    final_placements: Dict[str, int] = field(default_factory=dict)
    rewards_granted: Set[str] = field(default_factory=set)

    def __post_init__(self):
        self.status = TournamentStatus(self.status)

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    @property
    def is_full(self) -> bool:
        return self.participant_count >= self.config.max_participants

    def find_match(self, match_id: str) -> Optional[TournamentMatch]:
        for tournament_round in self.rounds:
            for match in tournament_round.matches:
                if match.id == match_id:
                    return match
        return None

    def active_match_for(self, player_id: str) -> Optional[TournamentMatch]:
        for tournament_round in self.rounds:
            for match in tournament_round.matches:
                if match.status == MatchStatus.IN_PROGRESS and match.has_player(player_id):
                    return match
        return None

    def lobby_info(self) -> "TournamentLobbyInfo":
        return TournamentLobbyInfo(
            id=self.id,
            name=self.config.name,
            type=self.config.type.value,
            subject=self.config.subject,
            difficulty=self.config.difficulty,
            participant_count=self.participant_count,
            max_participants=self.config.max_participants,
            status=self.status.value,
            is_official=self.config.is_official,
            creator_username=self.creator_username,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "config": self.config.to_dict(),
            "creator_id": self.creator_id,
            "creator_username": self.creator_username,
            "status": self.status.value,
            "participants": [p.to_dict() for p in self.participants.values()],
            "rounds": [r.to_dict() for r in self.rounds],
            "current_round": self.current_round,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "winner_id": self.winner_id,
            "final_placements": [
                {"player_id": player_id, "placement": placement}
                for player_id, placement in self.final_placements.items()
            ],
            "rewards_granted": sorted(self.rewards_granted),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Tournament":
        participants = [TournamentParticipant.from_dict(p) for p in data.get("participants", [])]
        return cls(
            id=data["id"],
            config=TournamentConfig.from_dict(data["config"]),
            creator_id=data["creator_id"],
            creator_username=data.get("creator_username", ""),
            status=data.get("status", TournamentStatus.WAITING),
            participants={p.player_id: p for p in participants},
            rounds=[TournamentRound.from_dict(r) for r in data.get("rounds", [])],
            current_round=data.get("current_round", 0),
            created_at=data.get("created_at", 0),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            winner_id=data.get("winner_id"),
            final_placements={
                item["player_id"]: item["placement"]
                for item in data.get("final_placements", [])
            },
            rewards_granted=set(data.get("rewards_granted", [])),
        )


@dataclass
class TournamentLobbyInfo:
    id: str
    name: str
    type: str
    subject: str
    difficulty: str
    participant_count: int
    max_participants: int
    status: str
    is_official: bool
    creator_username: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class QuickMatchConfig:
    subject: str
    difficulty: str
    player_count: int = 2
    questions_per_round: int = 10
    category: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.subject}|{self.difficulty}|{self.player_count}"


@dataclass
class QuickMatchState:
    match_id: str
    config: QuickMatchConfig
    players: List[TournamentParticipant]
    current_question: int = 0
    total_questions: int = 10
    status: QuickMatchStatus = QuickMatchStatus.WAITING
    countdown_seconds: int = 0
    question_started_at: Optional[float] = None
    question: Optional[Question] = field(default=None, repr=False)
    answered: Set[str] = field(default_factory=set, repr=False)
    stall_attempts: int = field(default=0, repr=False)
    activity_kind: str = "quick_match"

    @property
    def player_ids(self) -> List[str]:
        return [p.player_id for p in self.players]

    def get_player(self, player_id: str) -> Optional[TournamentParticipant]:
        for player in self.players:
            if player.player_id == player_id:
                return player
        return None

    def to_payload(self) -> dict:
        return {
            "match_id": self.match_id,
            "status": self.status.value,
            "current_question": self.current_question,
            "total_questions": self.total_questions,
            "countdown_seconds": self.countdown_seconds,
            "players": [
                {
                    "player_id": p.player_id,
                    "username": p.username,
                    "score": p.current_score,
                    "correct_answers": p.correct_answers,
                    "wrong_answers": p.wrong_answers,
                    "streak": p.streak,
                }
                for p in self.players
            ],
        }


@dataclass
class DirectChallenge:
    id: str
    challenger_id: str
    challenger_username: str
    challenged_id: str
    challenged_username: str
    subject: str
    difficulty: str
    questions_per_match: int
    status: ChallengeStatus = ChallengeStatus.PENDING
    created_at: int = 0
    expires_at: int = 0
    match_id: Optional[str] = None

    def __post_init__(self):
        self.status = ChallengeStatus(self.status)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data

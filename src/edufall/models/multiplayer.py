"""Race and team challenge models."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .question import Question


@dataclass
class RaceParticipant:
    player_id: str
    username: str
    current_question: int = 0
    correct_answers: int = 0
    wrong_answers: int = 0
    finished: bool = False
    completion_time: Optional[float] = None  # seconds from race start


@dataclass
class RaceSession:
    id: str
    host_id: str
    participants: Dict[str, RaceParticipant]
    questions: List[Question]
    started_at: float = 0.0
    active: bool = False
    winner_id: Optional[str] = None

    def standings(self) -> List[Dict]:
        """Progress ranking while the race runs."""
        total = len(self.questions) or 1
        rows = [
            {
                "player_id": p.player_id,
                "username": p.username,
                "progress": p.current_question / total,
                "correct_answers": p.correct_answers,
            }
            for p in self.participants.values()
        ]
        rows.sort(key=lambda r: (-r["progress"], -r["correct_answers"]))
        return rows

    def results(self) -> List[Dict]:
        """Final ranking: most correct, then fastest."""
        rows = [
            {
                "player_id": p.player_id,
                "username": p.username,
                "correct_answers": p.correct_answers,
                "time": p.completion_time,
            }
            for p in self.participants.values()
        ]
        rows.sort(key=lambda r: (
            -r["correct_answers"],
            r["time"] if r["time"] is not None else float("inf"),
        ))
        return rows


@dataclass
class TeamMember:
    player_id: str
    username: str
    correct_answers: int = 0
    wrong_answers: int = 0
    contribution_score: int = 0
    active: bool = True


@dataclass
class Team:
    id: int
    name: str
    color: str
    members: Dict[str, TeamMember] = field(default_factory=dict)
    total_score: int = 0
    lives: int = 3
    combo: int = 0
    question_index: int = 0

    @property
    def alive(self) -> bool:
        return self.lives > 0

    def summary(self) -> Dict:
        return {
            "team_id": self.id,
            "name": self.name,
            "score": self.total_score,
            "lives": self.lives,
            "combo": self.combo,
        }


@dataclass
class TeamChallenge:
    id: str
    teams: Dict[int, Team]
    questions: List[Question]
    started_at: float = 0.0
    active: bool = True
    winning_team: Optional[int] = None

    def team_for(self, player_id: str) -> Optional[Team]:
        for team in self.teams.values():
            if player_id in team.members:
                return team
        return None

    def member_ids(self) -> List[str]:
        return [pid for team in self.teams.values() for pid in team.members]

    def results(self) -> List[Dict]:
        rows = [team.summary() for team in self.teams.values()]
        rows.sort(key=lambda r: -r["score"])
        return rows

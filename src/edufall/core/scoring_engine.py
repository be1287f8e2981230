"""Per-player session scoring."""
import logging
import time
from typing import Callable, Dict, Optional

from ..config.settings import SCORING_CONFIG
from ..models.question import to_game_difficulty
from ..models.scoring import ScoreBreakdown, SessionScoreState, GameScoreSummary
from ..utils.scoring import (
    calculate_speed_bonus,
    calculate_streak_multiplier,
    determine_bonus_type,
    calculate_grade,
    calculate_xp,
)

logger = logging.getLogger(__name__)


class ScoringEngine:
    """Accumulates points for each player's active session.

    Points for a correct answer are
    ``base * difficulty * speed * streak``, rounded. Operations on a player
    without a session are no-ops that log a warning.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None, config: Dict = SCORING_CONFIG):
        self.clock = clock or time.monotonic
        self.config = config
        self._sessions: Dict[str, SessionScoreState] = {}

    def start_session(self, player_id: str) -> None:
        if player_id in self._sessions:
            logger.warning(f"Scoring session already active for {player_id}")
            return
        self._sessions[player_id] = SessionScoreState()

    def discard_session(self, player_id: str) -> None:
        self._sessions.pop(player_id, None)

    def is_active(self, player_id: str) -> bool:
        return player_id in self._sessions

    def start_question(self, player_id: str) -> None:
        state = self._sessions.get(player_id)
        if not state:
            logger.warning(f"start_question for unknown player {player_id}")
            return
        state.question_start_time = self.clock()

    def _response_time(self, state: SessionScoreState, response_time: Optional[float]) -> float:
        if response_time is not None:
            return max(0.0, response_time)
        if state.question_start_time is None:
            return 0.0
        return max(0.0, self.clock() - state.question_start_time)

    def _difficulty_multiplier(self, difficulty: str) -> float:
        multipliers = self.config['difficulty_multipliers']
        return multipliers.get(to_game_difficulty(difficulty), 1.0)

    def record_correct(
        self,
        player_id: str,
        difficulty: str,
        response_time: Optional[float] = None
    ) -> ScoreBreakdown:
        base_points = self.config['base_points']
        state = self._sessions.get(player_id)
        if not state:
            logger.warning(f"record_correct for unknown player {player_id}")
            return ScoreBreakdown(base_points, 1.0, 1.0, 1.0, 0)

        elapsed = self._response_time(state, response_time)
        state.response_times.append(elapsed)
        state.current_streak += 1
        state.best_streak = max(state.best_streak, state.current_streak)
        state.correct_count += 1

        difficulty_multiplier = self._difficulty_multiplier(difficulty)
        speed_bonus = calculate_speed_bonus(elapsed, self.config)
        streak_multiplier = calculate_streak_multiplier(state.current_streak, self.config)

        total = round(base_points * difficulty_multiplier * speed_bonus * streak_multiplier)
        base_total = round(base_points * difficulty_multiplier)

        state.total_score += total
        state.base_points_earned += base_total
        state.bonus_points_earned += total - base_total

        breakdown = ScoreBreakdown(
            base_points=base_points,
            difficulty_multiplier=difficulty_multiplier,
            speed_bonus=speed_bonus,
            streak_multiplier=streak_multiplier,
            total_points=total,
            bonus_type=determine_bonus_type(speed_bonus, streak_multiplier),
        )
        state.score_history.append(breakdown)
        return breakdown

    def record_wrong(self, player_id: str, response_time: Optional[float] = None) -> None:
        state = self._sessions.get(player_id)
        if not state:
            logger.warning(f"record_wrong for unknown player {player_id}")
            return
        state.response_times.append(self._response_time(state, response_time))
        state.current_streak = 0
        state.wrong_count += 1

    def end_session(self, player_id: str, difficulty: str) -> GameScoreSummary:
        """Finalize and destroy the player's session."""
        game_difficulty = to_game_difficulty(difficulty)
        state = self._sessions.pop(player_id, None)
        if not state:
            logger.warning(f"end_session for unknown player {player_id}")
            return GameScoreSummary(difficulty=game_difficulty)

        total = state.total_answered
        perfect_game = (
            state.wrong_count == 0
            and total >= self.config['perfect_game_min_questions']
        )
        if perfect_game:
            bonus = round(self.config['perfect_game_bonus'] * self._difficulty_multiplier(difficulty))
            state.total_score += bonus
            state.bonus_points_earned += bonus

        avg_response_time = state.avg_response_time
        grade = calculate_grade(state.accuracy, avg_response_time, state.best_streak, self.config)

        summary = GameScoreSummary(
            total_score=state.total_score,
            correct_count=state.correct_count,
            wrong_count=state.wrong_count,
            best_streak=state.best_streak,
            avg_response_time=avg_response_time,
            perfect_game=perfect_game,
            grade=grade,
            xp_earned=calculate_xp(state.total_score, self.config),
            difficulty=game_difficulty,
            base_points_earned=state.base_points_earned,
            bonus_points_earned=state.bonus_points_earned,
        )
        logger.info(
            f"Session ended for {player_id}: {summary.total_score} points, "
            f"grade {summary.grade}"
        )
        return summary

    def get_session_stats(self, player_id: str) -> Optional[dict]:
        state = self._sessions.get(player_id)
        if not state:
            return None
        return {
            "total_score": state.total_score,
            "current_streak": state.current_streak,
            "best_streak": state.best_streak,
            "correct_count": state.correct_count,
            "wrong_count": state.wrong_count,
            "accuracy": round(state.accuracy * 100),
            "avg_response_time": state.avg_response_time,
            "streak_multiplier": calculate_streak_multiplier(state.current_streak, self.config),
        }

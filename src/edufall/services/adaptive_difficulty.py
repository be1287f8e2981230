"""Per-player difficulty that follows recent accuracy and response speed."""
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional

from ..config.settings import ADAPTIVE_CONFIG
from ..models.question import GAME_DIFFICULTIES, to_game_difficulty

logger = logging.getLogger(__name__)


@dataclass
class PlayerPerformance:
    player_id: str
    difficulty: str
    answers: Deque[bool] = field(default_factory=deque)
    response_times: Deque[float] = field(default_factory=deque)
    last_adjustment: Optional[float] = None

    @property
    def accuracy(self) -> float:
        return sum(self.answers) / len(self.answers) if self.answers else 0.0

    @property
    def avg_response_time(self) -> float:
        return sum(self.response_times) / len(self.response_times) if self.response_times else 0.0


class AdaptiveDifficultyTracker:
    """Moves a player one difficulty step up or down based on a rolling window.

    A step up needs high accuracy with fast answers (or three fast correct
    answers in a row); a step down follows low accuracy, slow answers or
    three misses in a row. Adjustments are at least ``adjustment_cooldown``
    seconds apart.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None, config: Dict = ADAPTIVE_CONFIG):
        self.clock = clock or time.monotonic
        self.config = config
        self._players: Dict[str, PlayerPerformance] = {}

    def start_player(self, player_id: str, difficulty: str = "moderate") -> str:
        """Begin a fresh window at the chosen difficulty."""
        window = self.config["window_size"]
        self._players[player_id] = PlayerPerformance(
            player_id=player_id,
            difficulty=to_game_difficulty(difficulty),
            answers=deque(maxlen=window),
            response_times=deque(maxlen=window),
        )
        logger.debug(f"Adaptive difficulty for {player_id} starts at {difficulty}")
        return self._players[player_id].difficulty

    def remove_player(self, player_id: str) -> None:
        self._players.pop(player_id, None)

    def record_answer(self, player_id: str, correct: bool, response_time: float) -> str:
        """Add one answer to the window and return the (possibly new) difficulty."""
        performance = self._players.get(player_id)
        if not performance:
            self.start_player(player_id)
            performance = self._players[player_id]

        performance.answers.append(bool(correct))
        performance.response_times.append(max(0.0, response_time))

        step = self._adjustment(performance)
        if step:
            self._apply_step(performance, step)
        return performance.difficulty

    def get_current_difficulty(self, player_id: str) -> str:
        performance = self._players.get(player_id)
        return performance.difficulty if performance else "moderate"

    def get_performance_stats(self, player_id: str) -> Optional[Dict]:
        performance = self._players.get(player_id)
        if not performance or not performance.answers:
            return None
        return {
            "accuracy": performance.accuracy,
            "target_accuracy": self.config["target_accuracy"],
            "avg_response_time": performance.avg_response_time,
            "current_difficulty": performance.difficulty,
            "window": len(performance.answers),
        }

    def _adjustment(self, performance: PlayerPerformance) -> int:
        config = self.config
        if len(performance.answers) < config["min_answers"]:
            return 0
        if (performance.last_adjustment is not None
                and self.clock() - performance.last_adjustment < config["adjustment_cooldown"]):
            return 0

        accuracy = performance.accuracy
        avg_time = performance.avg_response_time
        if accuracy > config["raise_accuracy"] and avg_time < config["fast_response"]:
            return 1
        if accuracy < config["lower_accuracy"] or avg_time > config["slow_response"]:
            return -1

        last_answers = list(performance.answers)[-3:]
        last_times = list(performance.response_times)[-3:]
        if all(last_answers) and all(t < config["fast_response"] for t in last_times):
            return 1
        if not any(last_answers):
            return -1
        return 0

    def _apply_step(self, performance: PlayerPerformance, step: int) -> None:
        index = GAME_DIFFICULTIES.index(performance.difficulty)
        new_index = max(0, min(len(GAME_DIFFICULTIES) - 1, index + step))
        if new_index == index:
            return
        previous = performance.difficulty
        performance.difficulty = GAME_DIFFICULTIES[new_index]
        performance.last_adjustment = self.clock()
        logger.info(f"Adaptive difficulty for {performance.player_id}: {previous} -> {performance.difficulty}")

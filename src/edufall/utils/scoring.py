"""Scoring utilities shared by the game modes."""
import math
from typing import Dict, Optional, Sequence, Tuple

from ..config.settings import SCORING_CONFIG, MATCHMAKING_CONFIG


def calculate_speed_bonus(response_time: float, config: Dict = SCORING_CONFIG) -> float:
    """Calculate the speed multiplier for a response time in seconds."""
    multiplier = 1.0
    for threshold, bonus in config['speed_thresholds']:
        if response_time <= threshold:
            multiplier = bonus
            break
    return multiplier


def calculate_streak_multiplier(streak: int, config: Dict = SCORING_CONFIG) -> float:
    """Calculate point multiplier based on answer streak."""
    multiplier = 1.0
    for streak_req, bonus in sorted(config['streak_bonuses'].items(), reverse=True):
        if streak >= streak_req:
            multiplier = min(bonus, config['max_streak_multiplier'])
            break
    return multiplier


def determine_bonus_type(speed_bonus: float, streak_multiplier: float) -> Optional[str]:
    """Label a breakdown for UI feedback."""
    if speed_bonus > 1.0 and streak_multiplier > 1.0:
        return 'combo'
    if speed_bonus > 1.0:
        return 'speed'
    if streak_multiplier > 1.0:
        return 'streak'
    return None


def calculate_weighted_score(accuracy: float, avg_response_time: float,
                             best_streak: int, config: Dict = SCORING_CONFIG) -> float:
    """Weighted performance score (0-100) used for letter grades."""
    weights = config['grade_weights']
    accuracy_score = accuracy * 100
    speed_score = max(0.0, 100 - avg_response_time * 10)  # 10 seconds = 0
    streak_score = min(100, best_streak * 10)              # 10 streak = 100
    return (
        accuracy_score * weights['accuracy']
        + speed_score * weights['speed']
        + streak_score * weights['streak']
    )


def calculate_grade(accuracy: float, avg_response_time: float,
                    best_streak: int, config: Dict = SCORING_CONFIG) -> str:
    """Calculate a letter grade from accuracy, speed and streak."""
    weighted = calculate_weighted_score(accuracy, avg_response_time, best_streak, config)
    for grade, threshold in config['grade_thresholds']:
        if weighted >= threshold:
            return grade
    return 'F'


def calculate_xp(score: float, config: Dict = SCORING_CONFIG) -> int:
    return math.floor(score * config['xp_per_point'])


def calculate_match_points(response_time: float, config: Dict = MATCHMAKING_CONFIG) -> int:
    """Points for a correct answer in a head-to-head match."""
    points = config['base_points']
    for limit, bonus in config['speed_bonus']:
        if response_time < limit:
            points += bonus
            break
    return points


def update_running_average(average: float, count: int, value: float) -> float:
    """Fold a new value into an average over ``count`` values (count includes it)."""
    if count <= 0:
        return 0.0
    return (average * (count - 1) + value) / count


def rank_results(players: Sequence, keys: Tuple[str, ...]) -> list:
    """Sort objects by the given attributes, descending unless prefixed with '-'."""
    def sort_key(player):
        values = []
        for key in keys:
            if key.startswith('-'):
                values.append(getattr(player, key[1:]))
            else:
                values.append(-getattr(player, key))
        return tuple(values)
    return sorted(players, key=sort_key)

"""Configuration settings for the EduFall game server."""
from pathlib import Path
from typing import Dict, List

# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent

# Subjects with a registered question provider
SUBJECTS: List[str] = ["math", "spelling", "geography", "science", "history"]

# Game difficulty -> question difficulty
DIFFICULTY_MAP: Dict[str, str] = {
    "beginner": "beginner",
    "moderate": "intermediate",
    "hard": "advanced",
}

# Question difficulty -> game difficulty
QUESTION_DIFFICULTY_MAP: Dict[str, str] = {
    "beginner": "beginner",
    "intermediate": "moderate",
    "advanced": "hard",
    "expert": "hard",
}

# Scoring Configuration
SCORING_CONFIG = {
    "base_points": 100,
    "difficulty_multipliers": {
        "beginner": 1.0,
        "moderate": 2.0,
        "hard": 3.0,
    },
    # Response time (seconds) -> multiplier, first match wins
    "speed_thresholds": [
        (1.5, 2.0),   # lightning fast
        (3.0, 1.5),
        (5.0, 1.25),
        (8.0, 1.1),
    ],
    # Streak length -> multiplier, first match wins
    "streak_bonuses": {
        10: 2.0,
        7: 1.75,
        5: 1.5,
        3: 1.25,
        2: 1.1,
    },
    "max_streak_multiplier": 2.0,
    "perfect_game_bonus": 500,
    "perfect_game_min_questions": 10,
    "xp_per_point": 0.1,      # 10 points = 1 XP

    # Grade weighting (accuracy / speed / streak)
    "grade_weights": {
        "accuracy": 0.6,
        "speed": 0.25,
        "streak": 0.15,
    },
    "grade_thresholds": [
        ("S", 95),
        ("A", 85),
        ("B", 70),
        ("C", 55),
        ("D", 40),
    ],
}

# Leaderboard Configuration
LEADERBOARD_CONFIG = {
    "boards": [
        "daily", "weekly", "all-time", "streak", "speed-run",
        "math", "spelling", "geography", "science", "history",
    ],
    "max_entries": 100,
    "reset_check_interval": 60,   # seconds
    "snapshot_interval": 300,     # seconds, 0 disables
}

# Quick match / matchmaking
MATCHMAKING_CONFIG = {
    "queue_timeout": 60,          # seconds before a queued player expires
    "countdown_seconds": 5,       # countdown ticks, one per second
    "question_time_limit": 15,    # seconds per question
    "question_delay": 2,          # seconds between questions
    "results_cleanup_delay": 10,  # seconds results stay visible
    "min_players": 2,
    "max_players": 4,
    "default_questions": 10,

    # Match points: base plus bonus for answers under N seconds
    "base_points": 100,
    "speed_bonus": [
        (2, 50),
        (5, 25),
        (8, 10),
    ],
}

# Tournament Configuration
TOURNAMENT_CONFIG = {
    "match_start_countdown": 5,   # seconds
    "question_time_limit": 15,    # seconds, default when config has none
    "question_delay": 2,          # seconds between match questions
    "round_delay": 10,            # seconds between bracket rounds
    "challenge_expiry": 300,      # seconds to accept a challenge
    "completion_grace": 60,       # seconds before a finished record is dropped
    "invite_code_alphabet": "ABCDEFGHJKLMNPQRSTUVWXYZ23456789",
    "invite_code_length": 6,
    "min_name_length": 3,
    "bracket_sizes": [4, 8, 16, 32],
    "quick_match_max": 4,
    "league_min": 4,

    # Stalled match recovery
    "stall_max_retries": 3,
    "stall_base_delay": 1.0,      # seconds, doubled per attempt
}

# Solo session settings
SESSION_CONFIG = {
    "max_questions": 10,
    "reset_delay": 0.5,           # seconds between answer and next question
    "gravity_base": 0.1,
    "gravity_step": 0.05,         # added per correct answer
    "max_gravity_multiplier": 3,
    "lobby_return_delay": 8,      # seconds results stay on screen
}

# Adaptive difficulty for solo sessions
ADAPTIVE_CONFIG = {
    "window_size": 10,            # most recent answers considered
    "min_answers": 3,             # answers needed before any adjustment
    "target_accuracy": 0.75,
    "raise_accuracy": 0.9,        # above this with fast answers, step up
    "lower_accuracy": 0.5,        # below this, step down
    "fast_response": 5.0,         # seconds
    "slow_response": 15.0,        # seconds
    "adjustment_cooldown": 15.0,  # seconds between adjustments
}

# Race mode
RACE_CONFIG = {
    "questions_per_race": 10,
    "min_players": 2,
    "max_players": 4,
    "countdown_seconds": 3,
    "cleanup_delay": 60,          # seconds
    "subject": "math",
    "difficulty": "intermediate",
}

# Team challenge mode
TEAM_CONFIG = {
    "questions_per_challenge": 20,
    "starting_lives": 3,
    "min_players_per_team": 1,
    "team_names": ["Red", "Cyan", "Blue", "Green"],
    "team_colors": ["#FF6B6B", "#4ECDC4", "#45B7D1", "#96CEB4"],
    "points_per_correct": 10,
    "combo_step": 0.1,
    "max_combo_multiplier": 2.0,
    "cleanup_delay": 60,          # seconds
    "subject": "math",
    "difficulty": "intermediate",
}

# Player profile persistence
PERSISTENCE_CONFIG = {
    "max_save_retries": 3,
    "retry_delay": 0.5,           # seconds, doubled per attempt
    "profile_subjects": [
        "math", "spelling", "vocabulary", "geography",
        "science", "history", "language", "typing",
    ],
    "profile_difficulties": ["beginner", "moderate", "hard"],
    "mastery_min_answers": 20,
    "mastery_min_accuracy": 90,   # percent
    "max_tournament_history": 50,
}

# Inbound UI messages
ROUTER_CONFIG = {
    "handler_timeout": 5.0,       # seconds
}

# Database Configuration
DB_CONFIG = {
    "url": f"sqlite+aiosqlite:///{BASE_DIR / 'data' / 'edufall.db'}",
    "echo": False,
}

# Logging Configuration
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        },
        "detailed": {
            "format": (
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s "
                "- [%(pathname)s:%(lineno)d]"
            )
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": "INFO",
        },
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": BASE_DIR / "logs" / "edufall.log",
            "formatter": "detailed",
            "level": "DEBUG",
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        },
        "error_file": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": BASE_DIR / "logs" / "error.log",
            "formatter": "detailed",
            "level": "ERROR",
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5
        }
    },
    "loggers": {
        "": {  # Root logger
            "handlers": ["console", "file", "error_file"],
            "level": "INFO",
        },
        "edufall": {  # Application logger
            "handlers": ["console", "file", "error_file"],
            "level": "DEBUG",
            "propagate": False
        }
    },
}

"""
Lifecycle Configuration - бизнес-константы и параметры окружения

Все пороги, квоты и таймауты оркестратора целей / планов / действий.
Значения окружения читаются один раз при импорте.
"""
import os

# =============================================================================
# CEILINGS
# =============================================================================

MAX_ACTIVE_GOALS = 3          # "3 pillars": активных целей на пользователя
MAX_ACTIVE_ACTIONS = 3        # активных действий на пользователя
MAX_SELECTED_AXES = 3

# =============================================================================
# QUOTAS
# =============================================================================

MAX_GENERATION_ATTEMPTS = 2
MAX_SUMMARY_ATTEMPTS = 3
MAX_SORTING_ATTEMPTS = 3

# =============================================================================
# ACTIONS
# =============================================================================

HABIT_MIN_TARGET_REPS = 1
HABIT_MAX_TARGET_REPS = 7
MISSION_TARGET_REPS = 1

TIMES_OF_DAY = ("morning", "afternoon", "evening", "night", "any_time")
DEFAULT_TIME_OF_DAY = "any_time"

# Порядок ролей, когда сортировщик их не вернул
GOAL_ROLES = ("foundation", "lever", "optimization")

# =============================================================================
# SUMMARY CACHE
# =============================================================================

SUMMARY_TIMEOUT_SECONDS = float(os.getenv("SUMMARY_TIMEOUT_SECONDS", "15"))
SUMMARY_LIMIT_PLACEHOLDER = (
    "Summary limit reached for this axis. "
    "Your answers are still used to build the plan."
)

# =============================================================================
# EXTERNAL COLLABORATORS
# =============================================================================

EDGE_FUNCTIONS_URL = os.getenv("EDGE_FUNCTIONS_URL", "http://localhost:54321/functions/v1")
EDGE_FUNCTIONS_KEY = os.getenv("EDGE_FUNCTIONS_KEY", "")
COLLABORATOR_TIMEOUT_SECONDS = float(os.getenv("COLLABORATOR_TIMEOUT_SECONDS", "120"))

# Куда отправлять клиента, если контекст выполнения не найден
RECOVERY_REDIRECT = os.getenv("RECOVERY_REDIRECT", "/dashboard")

# dev / single-node: create missing tables at startup
CREATE_TABLES_ON_STARTUP = os.getenv("CREATE_TABLES_ON_STARTUP", "false").lower() in ("1", "true", "yes")

# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "false").lower() in ("1", "true", "yes")

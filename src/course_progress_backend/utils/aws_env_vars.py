import logging
import os

_LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_WRITE_ATTEMPTS = 3
DEFAULT_STATS_PAGE_SIZE = 100
DEFAULT_METRICS_NAMESPACE = "CourseProgress/Api"


def _get_resource_by_env_var(env_var: str) -> str:
    table_name = os.environ.get(env_var)
    if not table_name:
        raise ValueError(f"Missing environment variable: {env_var}")
    return table_name


def _get_positive_int_env_var(env_var: str, default: int) -> int:
    raw_value = os.environ.get(env_var)
    if raw_value is None:
        return default
    try:
        value = int(raw_value)
    except ValueError:
        _LOGGER.warning(f"Invalid integer for {env_var}: {raw_value!r}. Using default {default}.")
        return default
    if value < 1:
        _LOGGER.warning(f"{env_var} must be at least 1 (got {value}). Using default {default}.")
        return default
    return value


def get_course_progress_table_name() -> str:
    return _get_resource_by_env_var("COURSE_PROGRESS_TABLE_NAME")


def get_lesson_catalog_table_name() -> str:
    return _get_resource_by_env_var("LESSON_CATALOG_TABLE_NAME")


def get_max_write_attempts() -> int:
    """
    Upper bound on optimistic-write attempts for a single progress mutation.
    Defaults to 3 if not set or invalid.
    """
    return _get_positive_int_env_var("PROGRESS_MAX_WRITE_ATTEMPTS", DEFAULT_MAX_WRITE_ATTEMPTS)


def get_course_stats_page_size() -> int:
    return _get_positive_int_env_var("COURSE_STATS_PAGE_SIZE", DEFAULT_STATS_PAGE_SIZE)


def get_metrics_namespace() -> str:
    return os.environ.get("METRICS_NAMESPACE") or DEFAULT_METRICS_NAMESPACE

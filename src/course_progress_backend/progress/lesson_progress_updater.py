import decimal
import logging
import math
import typing

from course_progress_backend.models.course_progress_models import (
    CourseProgressModel,
    LessonProgressEntryModel,
    ProgressStatus,
)
from course_progress_backend.progress.course_progress_calculator import (
    COMPLETE_PERCENT,
    CourseProgressCalculator,
    round_half_up,
)
from course_progress_backend.utils.base_types import IsoTimestamp, LessonId
from course_progress_backend.utils.time_utils import now_iso_timestamp

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

# Watching at least this much of a lesson counts as completing it
COMPLETION_THRESHOLD = 90


class InvalidProgressValueError(ValueError):
    def __init__(self, value: typing.Any, message: str) -> None:
        self.value = value
        self.message = message
        super().__init__(message)


def coerce_progress_percent(value: typing.Any) -> float:
    """
    Validates a client-supplied percent and returns it as a float in [0, 100], unrounded.

    :raises InvalidProgressValueError: If the value is not numeric or lies outside [0, 100].
    """
    if isinstance(value, bool) or not isinstance(value, (str, int, float, decimal.Decimal)):
        raise InvalidProgressValueError(value, "Progress must be a number between 0 and 100")

    # Range-check ints before float() so huge integers cannot overflow
    if isinstance(value, int) and not 0 <= value <= 100:
        raise InvalidProgressValueError(value, "Progress is outside the range 0-100")

    try:
        number = float(value.strip()) if isinstance(value, str) else float(value)
    except (ValueError, OverflowError, decimal.InvalidOperation):
        raise InvalidProgressValueError(value, "Progress must be a number between 0 and 100") from None

    if not math.isfinite(number) or number < 0 or number > 100:
        raise InvalidProgressValueError(value, "Progress is outside the range 0-100")

    return number


def lesson_status_for_percent(percent: float) -> ProgressStatus:
    return "completed" if percent >= COMPLETION_THRESHOLD else "in_progress"


class LessonProgressUpdater:
    """
    Applies per-lesson progress and completion changes to a loaded progress record,
    then recomputes the record's aggregates. Persisting is left to the caller.
    """

    def __init__(self, calculator: CourseProgressCalculator) -> None:
        self.calculator = calculator

    def _apply_session_details(
        self,
        entry: LessonProgressEntryModel,
        time_spent_seconds: int,
        notes: typing.Optional[str],
    ) -> None:
        entry.timeSpentSeconds += time_spent_seconds
        if notes is not None:
            entry.notes = notes.strip() or None

    @staticmethod
    def _check_time_spent(time_spent_seconds: int) -> None:
        if time_spent_seconds < 0:
            raise ValueError(f"time_spent_seconds must be non-negative (got {time_spent_seconds})")

    def update_lesson_progress(
        self,
        record: CourseProgressModel,
        lesson_id: LessonId,
        percent: typing.Any,
        time_spent_seconds: int = 0,
        notes: typing.Optional[str] = None,
    ) -> int:
        """
        Records how far the user got through a lesson.

        Reaching the completion threshold completes the lesson. Completion is sticky: a later,
        lower percent is stored but does not move the lesson back to in_progress, and the
        first completedAt is kept.

        :return: The recalculated course progress percent.
        :raises InvalidProgressValueError: Before any change, if percent is invalid.
        """
        percent_value = coerce_progress_percent(percent)
        # The threshold applies to the raw value; only the stored percent is rounded
        stored_percent = round_half_up(percent_value)
        self._check_time_spent(time_spent_seconds)
        now: IsoTimestamp = now_iso_timestamp()

        entry = record.find_lesson_entry(lesson_id)
        if entry is None:
            status = lesson_status_for_percent(percent_value)
            entry = LessonProgressEntryModel(
                lessonId=lesson_id,
                status=status,
                progress=stored_percent,
                lastAccessed=now,
                completedAt=now if status == "completed" else None,
            )
            record.lessonEntries.append(entry)
            _LOGGER.debug(f"Added lesson {lesson_id} at {stored_percent}% for user {record.userId}.")
        else:
            entry.progress = stored_percent
            if entry.status != "completed":
                entry.status = lesson_status_for_percent(percent_value)
                if entry.status == "completed" and not entry.completedAt:
                    entry.completedAt = now
            entry.lastAccessed = now
            _LOGGER.debug(f"Updated lesson {lesson_id} to {stored_percent}% ({entry.status}) for user {record.userId}.")

        self._apply_session_details(entry, time_spent_seconds, notes)
        record.lastAccessed = now
        return self.calculator.calculate_course_progress(record)

    def complete_lesson(
        self,
        record: CourseProgressModel,
        lesson_id: LessonId,
        time_spent_seconds: int = 0,
        notes: typing.Optional[str] = None,
    ) -> int:
        """
        Marks a lesson as completed. Idempotent: completing an already completed lesson
        keeps its completedAt and does not change any counter.

        :return: The recalculated course progress percent.
        """
        self._check_time_spent(time_spent_seconds)
        now: IsoTimestamp = now_iso_timestamp()

        entry = record.find_lesson_entry(lesson_id)
        if entry is None:
            entry = LessonProgressEntryModel(
                lessonId=lesson_id,
                status="completed",
                progress=COMPLETE_PERCENT,
                lastAccessed=now,
                completedAt=now,
            )
            record.lessonEntries.append(entry)
            _LOGGER.info(f"Lesson {lesson_id} completed by user {record.userId}.")
        else:
            if entry.status != "completed":
                entry.status = "completed"
                entry.completedAt = entry.completedAt or now
                _LOGGER.info(f"Lesson {lesson_id} completed by user {record.userId}.")
            else:
                _LOGGER.debug(f"Lesson {lesson_id} already completed by user {record.userId}.")
            entry.progress = COMPLETE_PERCENT
            entry.lastAccessed = now

        self._apply_session_details(entry, time_spent_seconds, notes)
        record.lastAccessed = now
        return self.calculator.calculate_course_progress(record)

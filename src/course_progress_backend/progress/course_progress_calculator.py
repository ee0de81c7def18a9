import logging
import math
import typing

from course_progress_backend.cloudwatch.metrics import MetricsManager
from course_progress_backend.dynamodb.lesson_catalog_table import LessonCatalogError, LessonCatalogReader
from course_progress_backend.models.course_progress_models import CourseProgressModel, ProgressStatus
from course_progress_backend.utils.time_utils import now_iso_timestamp

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

COMPLETE_PERCENT = 100


def round_half_up(value: float) -> int:
    """Rounds .5 away from zero for non-negative values (12.5 -> 13), unlike round()."""
    return int(math.floor(value + 0.5))


def derive_course_status(progress: int, total_lessons: int) -> ProgressStatus:
    """
    The only place a course status is decided: a pure function of progress and lesson count.
    """
    if total_lessons == 0:
        return "not_started"
    if progress >= COMPLETE_PERCENT:
        return "completed"
    if progress > 0:
        return "in_progress"
    return "not_started"


class CourseProgressCalculator:
    """
    Recomputes the aggregate fields of a progress record (totalLessons, completedLessonsCount,
    progress, status, completedAt) from its lesson entries. Runs after every mutation and
    before the record is saved.
    """

    def __init__(
        self,
        lesson_catalog: LessonCatalogReader,
        metrics_manager: typing.Optional[MetricsManager] = None,
    ) -> None:
        self.lesson_catalog = lesson_catalog
        self.metrics_manager = metrics_manager

    def refresh_total_lessons(self, record: CourseProgressModel) -> bool:
        """
        Replaces the cached lesson count when the catalog reports a different one.
        If the catalog cannot be read the cached value is kept.

        :return: True if totalLessons changed.
        """
        try:
            live_total = self.lesson_catalog.lesson_count_for_course(record.courseId)
        except LessonCatalogError as ce:
            _LOGGER.warning(
                f"Catalog unavailable for course {record.courseId}; keeping cached totalLessons "
                f"{record.totalLessons}: {ce.message}"
            )
            if self.metrics_manager:
                self.metrics_manager.put_metric("LessonCatalogFallback", 1)
            return False

        if live_total == record.totalLessons:
            return False

        _LOGGER.info(
            f"totalLessons for course {record.courseId} changed from {record.totalLessons} to {live_total}."
        )
        record.totalLessons = live_total
        return True

    def calculate_course_progress(self, record: CourseProgressModel) -> int:
        """
        Recalculates the record's aggregate fields in place.

        :return: The new course progress percent.
        """
        self.refresh_total_lessons(record)

        completed_count = sum(1 for entry in record.lessonEntries if entry.status == "completed")
        record.completedLessonsCount = completed_count

        if record.totalLessons == 0:
            progress = 0
        else:
            # Lessons removed from the catalog can leave more completions than lessons
            progress = min(COMPLETE_PERCENT, round_half_up(completed_count / record.totalLessons * 100))

        record.progress = progress
        record.status = derive_course_status(progress, record.totalLessons)

        if record.status == "completed" and not record.completedAt:
            record.completedAt = now_iso_timestamp()
            _LOGGER.info(f"User {record.userId} completed course {record.courseId}.")

        return progress

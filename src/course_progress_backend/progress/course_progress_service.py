import logging
import typing

from course_progress_backend.cloudwatch.metrics import MetricsManager
from course_progress_backend.dynamodb.course_progress_table import ConcurrencyConflictError, CourseProgressTable
from course_progress_backend.dynamodb.lesson_catalog_table import LessonCatalogError, LessonCatalogReader
from course_progress_backend.models.course_progress_models import (
    CourseProgressModel,
    CourseProgressSummaryModel,
    CourseStatsModel,
)
from course_progress_backend.progress.course_progress_calculator import CourseProgressCalculator
from course_progress_backend.progress.course_stats_aggregator import CourseStatsAggregator
from course_progress_backend.progress.lesson_progress_updater import (
    LessonProgressUpdater,
    coerce_progress_percent,
)
from course_progress_backend.utils.base_types import CourseId, LessonId, UserId
from course_progress_backend.utils.input_validator import InputValidator
from course_progress_backend.utils.time_utils import now_iso_timestamp

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)


class CourseProgressService:
    """
    Entry point of the progress engine used by the API layer.

    Every mutation is a load -> mutate -> recalculate -> conditional save cycle. When the save
    loses a race with another request for the same (user, course) the whole cycle is replayed
    against the fresh record, so concurrent completions of different lessons all survive.
    """

    def __init__(
        self,
        progress_table: CourseProgressTable,
        lesson_catalog: LessonCatalogReader,
        metrics_manager: MetricsManager,
        max_write_attempts: int = 3,
        stats_page_size: int = 100,
    ) -> None:
        self.progress_table = progress_table
        self.lesson_catalog = lesson_catalog
        self.metrics_manager = metrics_manager
        self.max_write_attempts = max(1, max_write_attempts)
        self.calculator = CourseProgressCalculator(lesson_catalog, metrics_manager)
        self.updater = LessonProgressUpdater(self.calculator)
        self.stats_aggregator = CourseStatsAggregator(progress_table, page_size=stats_page_size)

    def _mutate_with_retry(
        self,
        user_id: UserId,
        course_id: CourseId,
        mutation: typing.Callable[[CourseProgressModel], typing.Any],
    ) -> CourseProgressModel:
        for attempt in range(1, self.max_write_attempts + 1):
            record = self.progress_table.get_or_create(user_id, course_id)
            mutation(record)
            try:
                return self.progress_table.save_course_progress(record)
            except ConcurrencyConflictError:
                self.metrics_manager.put_metric("ConcurrencyConflictRetry", 1)
                _LOGGER.warning(
                    f"Attempt {attempt}/{self.max_write_attempts} lost a write race for user {user_id}, "
                    f"course {course_id}."
                )

        self.metrics_manager.put_metric("ConcurrencyConflictExhausted", 1)
        _LOGGER.error(f"Giving up on progress update for user {user_id}, course {course_id}.")
        raise ConcurrencyConflictError(
            user_id, course_id, f"Progress update failed after {self.max_write_attempts} attempts."
        )

    def track_lesson_progress(
        self,
        user_id: UserId,
        course_id: CourseId,
        lesson_id: LessonId,
        percent: typing.Any,
        time_spent_seconds: int = 0,
        notes: typing.Optional[str] = None,
    ) -> CourseProgressModel:
        """
        :raises InvalidProgressValueError: Before any storage access, if percent is invalid.
        :raises SuspiciousInputError: If the ids or notes fail input validation.
        :raises ConcurrencyConflictError: If every write attempt lost a race.
        """
        percent_value = coerce_progress_percent(percent)
        InputValidator.validate_lesson_input(course_id, lesson_id, notes)
        _LOGGER.info(f"Tracking lesson {lesson_id} at {percent_value}% for user {user_id}, course {course_id}")

        record = self._mutate_with_retry(
            user_id,
            course_id,
            lambda r: self.updater.update_lesson_progress(r, lesson_id, percent_value, time_spent_seconds, notes),
        )
        self.metrics_manager.put_metric("LessonProgressTracked", 1)
        return record

    def complete_lesson(
        self,
        user_id: UserId,
        course_id: CourseId,
        lesson_id: LessonId,
        time_spent_seconds: int = 0,
        notes: typing.Optional[str] = None,
    ) -> CourseProgressModel:
        InputValidator.validate_lesson_input(course_id, lesson_id, notes)
        _LOGGER.info(f"Completing lesson {lesson_id} for user {user_id}, course {course_id}")

        record = self._mutate_with_retry(
            user_id,
            course_id,
            lambda r: self.updater.complete_lesson(r, lesson_id, time_spent_seconds, notes),
        )
        self.metrics_manager.put_metric("LessonCompleted", 1)
        return record

    def _get_catalog_lesson_ids(self, course_id: CourseId) -> typing.Optional[list[LessonId]]:
        try:
            return self.lesson_catalog.get_lesson_ids_for_course(course_id)
        except LessonCatalogError as ce:
            _LOGGER.warning(f"Catalog unavailable for course {course_id}: {ce.message}")
            self.metrics_manager.put_metric("LessonCatalogFallback", 1)
            return None

    def get_course_progress(self, user_id: UserId, course_id: CourseId) -> CourseProgressSummaryModel:
        """
        Read-only summary of a user's progress in a course. A user without a record gets the
        zero-value summary, with totalLessons read live from the catalog.
        """
        record = self.progress_table.get_course_progress(user_id, course_id)
        lesson_ids = self._get_catalog_lesson_ids(course_id)

        if record is None:
            _LOGGER.info(f"No progress for user {user_id}, course {course_id}. Returning defaults.")
            return CourseProgressSummaryModel(
                userId=user_id,
                courseId=course_id,
                progress=0,
                completedLessons=0,
                totalLessons=len(lesson_ids) if lesson_ids is not None else 0,
                status="not_started",
                lastAccessed=now_iso_timestamp(),
                timeSpent=0,
                completionRate=0.0,
                nextLessonId=lesson_ids[0] if lesson_ids else None,
            )

        next_lesson_id = None
        if lesson_ids:
            completed = record.completed_lesson_ids()
            next_lesson_id = next((lesson_id for lesson_id in lesson_ids if lesson_id not in completed), None)
        return CourseProgressSummaryModel.from_record(record, next_lesson_id=next_lesson_id)

    def get_user_courses_progress(self, user_id: UserId) -> list[CourseProgressSummaryModel]:
        """All course summaries of a user, most recently accessed first."""
        records = self.progress_table.get_all_course_progress_for_user(user_id)
        records.sort(key=lambda r: r.lastAccessed, reverse=True)
        return [CourseProgressSummaryModel.from_record(record) for record in records]

    def get_course_students_progress(
        self,
        course_id: CourseId,
        limit: int = 50,
        last_evaluated_key: typing.Optional[dict[str, typing.Any]] = None,
    ) -> tuple[list[CourseProgressSummaryModel], typing.Optional[dict[str, typing.Any]]]:
        """One page of per-student summaries for a course, highest progress first within the page."""
        records, next_key = self.progress_table.get_course_progress_page(
            course_id, limit=limit, last_evaluated_key=last_evaluated_key
        )
        records.sort(key=lambda r: (r.progress, r.lastAccessed), reverse=True)
        return [CourseProgressSummaryModel.from_record(record) for record in records], next_key

    def get_course_stats(self, course_id: CourseId) -> CourseStatsModel:
        return self.stats_aggregator.get_course_stats(course_id)

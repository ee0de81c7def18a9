import typing
from unittest.mock import Mock

import boto3
import pytest
from moto import mock_aws
from test_utils.fake_catalog import FakeLessonCatalog

from course_progress_backend.cloudwatch.metrics import MetricsManager
from course_progress_backend.dynamodb.course_progress_table import ConcurrencyConflictError, CourseProgressTable
from course_progress_backend.models.course_progress_models import CourseProgressModel
from course_progress_backend.progress.course_progress_service import CourseProgressService
from course_progress_backend.progress.lesson_progress_updater import InvalidProgressValueError
from course_progress_backend.utils.base_types import CourseId, IsoTimestamp, LessonId, UserId
from course_progress_backend.utils.input_validator import SuspiciousInputError

REGION = "us-west-1"
TABLE_NAME = "test-course-progress-table"
USER_ID = UserId("student-1")
COURSE_ID = CourseId("python-101")


@pytest.fixture
def dynamodb_resource(aws_credentials) -> typing.Iterator:
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name=REGION)
        table = dynamodb.create_table(
            TableName=TABLE_NAME,
            KeySchema=[
                {"AttributeName": "userId", "KeyType": "HASH"},
                {"AttributeName": "courseId", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "userId", "AttributeType": "S"},
                {"AttributeName": "courseId", "AttributeType": "S"},
            ],
            GlobalSecondaryIndexes=[
                {
                    "IndexName": CourseProgressTable.GSI_COURSE_INDEX_NAME,
                    "KeySchema": [
                        {"AttributeName": "courseId", "KeyType": "HASH"},
                        {"AttributeName": "userId", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                }
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        table.wait_until_exists()
        yield dynamodb


@pytest.fixture
def catalog() -> FakeLessonCatalog:
    return FakeLessonCatalog({COURSE_ID: ["intro", "loops", "functions", "classes"], "other-course": ["x"]})


@pytest.fixture
def metrics_manager() -> MetricsManager:
    return MetricsManager("test")


@pytest.fixture
def service(dynamodb_resource, catalog, metrics_manager) -> CourseProgressService:
    return CourseProgressService(CourseProgressTable(TABLE_NAME, catalog), catalog, metrics_manager)


def test_track_lesson_progress_persists_record(service: CourseProgressService, metrics_manager):
    record = service.track_lesson_progress(USER_ID, COURSE_ID, LessonId("intro"), 45, time_spent_seconds=90)

    assert record.version == 1
    assert record.get_lesson_progress(LessonId("intro")) == 45
    stored = service.progress_table.get_course_progress(USER_ID, COURSE_ID)
    assert stored == record
    assert metrics_manager.queued_value("LessonProgressTracked") == 1


def test_track_lesson_progress_rejects_invalid_percent_before_storage(catalog, metrics_manager):
    progress_table = Mock()
    service = CourseProgressService(progress_table, catalog, metrics_manager)

    with pytest.raises(InvalidProgressValueError):
        service.track_lesson_progress(USER_ID, COURSE_ID, LessonId("intro"), "lots")

    progress_table.get_or_create.assert_not_called()
    progress_table.save_course_progress.assert_not_called()


def test_complete_lesson_rejects_suspicious_lesson_id(catalog, metrics_manager):
    progress_table = Mock()
    service = CourseProgressService(progress_table, catalog, metrics_manager)

    with pytest.raises(SuspiciousInputError):
        service.complete_lesson(USER_ID, COURSE_ID, LessonId("bad\x00id"))

    progress_table.get_or_create.assert_not_called()


def test_complete_all_lessons_completes_course(service: CourseProgressService, metrics_manager):
    for lesson_id in ("intro", "loops", "functions", "classes"):
        record = service.complete_lesson(USER_ID, COURSE_ID, LessonId(lesson_id))

    assert record.progress == 100
    assert record.status == "completed"
    assert record.completedAt is not None
    assert record.version == 4
    assert metrics_manager.queued_value("LessonCompleted") == 4


def test_concurrent_completions_of_different_lessons_both_survive(dynamodb_resource, catalog, metrics_manager):
    other_service = CourseProgressService(CourseProgressTable(TABLE_NAME, catalog), catalog, MetricsManager("test"))
    other_service.complete_lesson(USER_ID, COURSE_ID, LessonId("intro"))

    class InterleavingProgressTable(CourseProgressTable):
        """Lets another request complete a lesson between this request's read and write."""

        interleaved = False

        def save_course_progress(self, record: CourseProgressModel) -> CourseProgressModel:
            if not self.interleaved:
                self.interleaved = True
                other_service.complete_lesson(USER_ID, COURSE_ID, LessonId("functions"))
            return super().save_course_progress(record)

    service = CourseProgressService(InterleavingProgressTable(TABLE_NAME, catalog), catalog, metrics_manager)

    record = service.complete_lesson(USER_ID, COURSE_ID, LessonId("loops"))

    assert record.completedLessonsCount == 3
    assert record.completed_lesson_ids() == {"intro", "loops", "functions"}
    assert record.progress == 75
    assert metrics_manager.queued_value("ConcurrencyConflictRetry") == 1

    stored = service.progress_table.get_course_progress(USER_ID, COURSE_ID)
    assert stored is not None
    assert stored.completedLessonsCount == 3
    assert stored.version == 3


def test_gives_up_after_max_write_attempts(catalog, metrics_manager):
    progress_table = Mock()
    progress_table.get_or_create.side_effect = lambda user_id, course_id: CourseProgressModel(
        userId=user_id,
        courseId=course_id,
        totalLessons=4,
        startedAt=IsoTimestamp("2025-06-01T10:00:00+00:00"),
        lastAccessed=IsoTimestamp("2025-06-01T10:00:00+00:00"),
    )
    progress_table.save_course_progress.side_effect = ConcurrencyConflictError(USER_ID, COURSE_ID, "stale")
    service = CourseProgressService(progress_table, catalog, metrics_manager, max_write_attempts=3)

    with pytest.raises(ConcurrencyConflictError):
        service.complete_lesson(USER_ID, COURSE_ID, LessonId("intro"))

    assert progress_table.save_course_progress.call_count == 3
    assert progress_table.get_or_create.call_count == 3
    assert metrics_manager.queued_value("ConcurrencyConflictRetry") == 3
    assert metrics_manager.queued_value("ConcurrencyConflictExhausted") == 1
    assert metrics_manager.queued_value("LessonCompleted") == 0


def test_get_course_progress_without_record_returns_defaults(service: CourseProgressService):
    summary = service.get_course_progress(USER_ID, COURSE_ID)

    assert summary.progress == 0
    assert summary.completedLessons == 0
    assert summary.totalLessons == 4
    assert summary.status == "not_started"
    assert summary.timeSpent == 0
    assert summary.completionRate == 0
    assert summary.nextLessonId == "intro"
    assert service.progress_table.get_course_progress(USER_ID, COURSE_ID) is None


def test_get_course_progress_summary(service: CourseProgressService):
    service.complete_lesson(USER_ID, COURSE_ID, LessonId("intro"), time_spent_seconds=100)
    service.track_lesson_progress(USER_ID, COURSE_ID, LessonId("loops"), 50, time_spent_seconds=20)

    summary = service.get_course_progress(USER_ID, COURSE_ID)

    assert summary.progress == 25
    assert summary.completedLessons == 1
    assert summary.totalLessons == 4
    assert summary.status == "in_progress"
    assert summary.timeSpent == 120
    assert summary.completionRate == 0.25
    assert summary.nextLessonId == "loops"


def test_get_course_progress_with_catalog_down_uses_cached_totals(service: CourseProgressService, catalog, metrics_manager):
    service.complete_lesson(USER_ID, COURSE_ID, LessonId("intro"))
    catalog.failing = True

    summary = service.get_course_progress(USER_ID, COURSE_ID)

    assert summary.totalLessons == 4
    assert summary.progress == 25
    assert summary.nextLessonId is None
    assert metrics_manager.queued_value("LessonCatalogFallback") == 1


def test_get_user_courses_progress_most_recent_first(service: CourseProgressService):
    service.complete_lesson(USER_ID, CourseId("other-course"), LessonId("x"))
    service.track_lesson_progress(USER_ID, COURSE_ID, LessonId("intro"), 10)

    summaries = service.get_user_courses_progress(USER_ID)

    assert [s.courseId for s in summaries] == [COURSE_ID, "other-course"]
    assert summaries[1].status == "completed"


def test_get_course_students_progress_sorted_by_progress(service: CourseProgressService):
    service.complete_lesson(UserId("slow"), COURSE_ID, LessonId("intro"))
    service.complete_lesson(UserId("fast"), COURSE_ID, LessonId("intro"))
    service.complete_lesson(UserId("fast"), COURSE_ID, LessonId("loops"))
    service.track_lesson_progress(UserId("new"), COURSE_ID, LessonId("intro"), 5)

    summaries, last_key = service.get_course_students_progress(COURSE_ID, limit=10)

    assert [s.userId for s in summaries] == ["fast", "slow", "new"]
    assert [s.progress for s in summaries] == [50, 25, 0]
    assert last_key is None


def test_get_course_stats(service: CourseProgressService):
    for lesson_id in ("intro", "loops", "functions", "classes"):
        service.complete_lesson(UserId("finisher"), COURSE_ID, LessonId(lesson_id), time_spent_seconds=50)
    service.complete_lesson(UserId("starter"), COURSE_ID, LessonId("intro"))

    stats = service.get_course_stats(COURSE_ID)

    assert stats.totalStudents == 2
    assert stats.averageProgress == 62.5
    assert stats.completionRate == 0.5
    assert stats.averageTimeSpent == 100
    counts = {bucket.range: bucket.count for bucket in stats.progressDistribution}
    assert counts["100%"] == 1
    assert counts["25-49%"] == 1

import logging

from course_progress_backend.dynamodb.course_progress_table import CourseProgressTable
from course_progress_backend.models.course_progress_models import (
    CourseStatsModel,
    ProgressDistributionBucketModel,
)
from course_progress_backend.utils.base_types import CourseId

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

# (label, inclusive lower bound, exclusive upper bound)
PROGRESS_BUCKETS: tuple[tuple[str, int, int], ...] = (
    ("0-24%", 0, 25),
    ("25-49%", 25, 50),
    ("50-74%", 50, 75),
    ("75-99%", 75, 100),
    ("100%", 100, 101),
)


def _bucket_index(progress: int) -> int:
    for index, (_, lower, upper) in enumerate(PROGRESS_BUCKETS):
        if lower <= progress < upper:
            return index
    raise ValueError(f"Progress {progress} is outside every distribution bucket")


def _percentage(count: int, total: int) -> float:
    return round(count / total * 100, 2) if total > 0 else 0.0


class CourseStatsAggregator:
    """
    Cross-student statistics for one course, computed from a streamed read of every
    progress record of that course. Never writes; results may lag in-flight updates.
    """

    def __init__(self, progress_table: CourseProgressTable, page_size: int = 100) -> None:
        self.progress_table = progress_table
        self.page_size = page_size

    def get_course_stats(self, course_id: CourseId) -> CourseStatsModel:
        _LOGGER.info(f"Aggregating progress statistics for course {course_id}")

        total_students = 0
        completed_students = 0
        progress_sum = 0
        time_spent_sum = 0
        bucket_counts = [0] * len(PROGRESS_BUCKETS)

        for record in self.progress_table.iter_course_progress(course_id, page_size=self.page_size):
            total_students += 1
            progress_sum += record.progress
            time_spent_sum += record.time_spent_seconds
            if record.status == "completed":
                completed_students += 1
            bucket_counts[_bucket_index(record.progress)] += 1

        if total_students == 0:
            _LOGGER.info(f"No progress records for course {course_id}")
            average_progress = 0.0
            completion_rate = 0.0
            average_time_spent = 0.0
        else:
            average_progress = round(progress_sum / total_students, 2)
            completion_rate = completed_students / total_students
            average_time_spent = time_spent_sum / total_students

        distribution = [
            ProgressDistributionBucketModel(
                range=label,
                count=count,
                percentage=_percentage(count, total_students),
            )
            for (label, _, _), count in zip(PROGRESS_BUCKETS, bucket_counts)
        ]

        _LOGGER.info(
            f"Course {course_id}: {total_students} students, average progress {average_progress}, "
            f"{completed_students} completed."
        )
        return CourseStatsModel(
            courseId=course_id,
            totalStudents=total_students,
            averageProgress=average_progress,
            completionRate=completion_rate,
            averageTimeSpent=average_time_spent,
            progressDistribution=distribution,
        )

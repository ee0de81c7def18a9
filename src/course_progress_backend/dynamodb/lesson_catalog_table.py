import logging
import typing

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from course_progress_backend.utils.base_types import CourseId, LessonId

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)


class LessonCatalogError(Exception):
    """Raised when the lesson catalog cannot be read."""

    def __init__(self, course_id: CourseId, message: str) -> None:
        self.course_id = course_id
        self.message = message
        super().__init__(message)


class LessonCatalogReader(typing.Protocol):
    """Read-only view of the course catalog consumed by the progress engine."""

    def get_lesson_ids_for_course(self, course_id: CourseId) -> list[LessonId]: ...

    def lesson_count_for_course(self, course_id: CourseId) -> int: ...


class LessonCatalogTable:
    """
    Read-only Data Abstraction Layer over the course catalog table, which is owned
    by the catalog service. Only the ordered lesson list of a course is read here.

    Table Schema:
      - PK: courseId
      - lessonIds: ordered list of lesson ids
    """

    def __init__(self, table_name: str) -> None:
        self.client = boto3.resource("dynamodb")
        self.table = self.client.Table(table_name)
        _LOGGER.info(f"LessonCatalogTable initialized for table: {table_name}")

    def get_lesson_ids_for_course(self, course_id: CourseId) -> list[LessonId]:
        """
        Returns the course's lesson ids in catalog order. An unknown course has no lessons.

        :raises LessonCatalogError: If the catalog table cannot be read.
        """
        _LOGGER.debug(f"Fetching lesson ids for course_id: {course_id}")
        try:
            response = self.table.get_item(
                Key={"courseId": course_id},
                ProjectionExpression="courseId, lessonIds",
            )
        except ClientError as e:
            _LOGGER.error(f"Failed to read catalog for course_id {course_id}: {e.response['Error']['Message']}")
            raise LessonCatalogError(course_id, e.response["Error"]["Message"]) from e
        except BotoCoreError as e:
            _LOGGER.error(f"Catalog unreachable for course_id {course_id}: {e}")
            raise LessonCatalogError(course_id, str(e)) from e

        item = response.get("Item")
        if not item:
            _LOGGER.info(f"Course {course_id} not found in catalog. Treating as zero lessons.")
            return []
        return [LessonId(str(lesson_id)) for lesson_id in item.get("lessonIds") or []]

    def lesson_count_for_course(self, course_id: CourseId) -> int:
        return len(self.get_lesson_ids_for_course(course_id))

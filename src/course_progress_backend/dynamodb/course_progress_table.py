import logging
import typing

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError
from pydantic import ValidationError

from course_progress_backend.dynamodb.lesson_catalog_table import LessonCatalogError, LessonCatalogReader
from course_progress_backend.models.course_progress_models import CourseProgressModel
from course_progress_backend.utils.base_types import CourseId, UserId
from course_progress_backend.utils.time_utils import now_iso_timestamp

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)


class ConcurrencyConflictError(Exception):
    """Raised when a progress record was modified by someone else between read and write."""

    def __init__(self, user_id: UserId, course_id: CourseId, message: str) -> None:
        self.user_id = user_id
        self.course_id = course_id
        self.message = message
        super().__init__(message)


class CourseProgressTable:
    """
    Data Abstraction Layer for the CourseProgress DynamoDB table, the only owner of
    ProgressRecords. Writes are whole-item puts guarded by an optimistic version counter.

    Table Schema:
      - PK: userId
      - SK: courseId
      - GSI CourseProgressByCourseIndex: PK courseId, SK userId (projection ALL)
    """

    GSI_COURSE_INDEX_NAME = "CourseProgressByCourseIndex"

    def __init__(self, table_name: str, lesson_catalog: LessonCatalogReader) -> None:
        self.client = boto3.resource("dynamodb")
        self.table = self.client.Table(table_name)
        self.lesson_catalog = lesson_catalog
        _LOGGER.info(f"CourseProgressTable initialized for table: {table_name}")

    def _parse_items(self, ddb_items: list[dict[str, typing.Any]]) -> list[CourseProgressModel]:
        parsed_items = []
        for item in ddb_items:
            try:
                parsed_items.append(CourseProgressModel.model_validate(item))
            except ValidationError as ve:
                _LOGGER.warning(
                    f"Skipping invalid progress item (userId: {item.get('userId')}, "
                    f"courseId: {item.get('courseId')}): {ve}"
                )
        return parsed_items

    def get_course_progress(self, user_id: UserId, course_id: CourseId) -> typing.Optional[CourseProgressModel]:
        """
        Retrieves a user's progress for a course using a strongly consistent read.

        :return: CourseProgressModel instance if found, else None.
        """
        _LOGGER.debug(f"Fetching progress for user_id: {user_id}, course_id: {course_id}")
        try:
            response = self.table.get_item(Key={"userId": user_id, "courseId": course_id}, ConsistentRead=True)
        except ClientError as e:
            _LOGGER.error(f"Failed for user_id {user_id}, course_id {course_id}: {e.response['Error']['Message']}")
            raise

        item_data = response.get("Item")
        if not item_data:
            _LOGGER.debug(f"No progress found for user_id: {user_id}, course_id: {course_id}")
            return None
        try:
            return CourseProgressModel.model_validate(item_data)
        except ValidationError as ve:
            _LOGGER.error(f"Failed to validate data for user_id {user_id}, course_id {course_id}: {ve}", exc_info=True)
            raise

    def _build_new_record(self, user_id: UserId, course_id: CourseId) -> CourseProgressModel:
        try:
            total_lessons = self.lesson_catalog.lesson_count_for_course(course_id)
        except LessonCatalogError as ce:
            # Nothing cached yet; the calculator refreshes the count on the first mutation
            _LOGGER.warning(f"Catalog unavailable while creating progress for course {course_id}: {ce.message}")
            total_lessons = 0

        timestamp = now_iso_timestamp()
        return CourseProgressModel(
            userId=user_id,
            courseId=course_id,
            lessonEntries=[],
            progress=0,
            status="not_started",
            totalLessons=total_lessons,
            completedLessonsCount=0,
            startedAt=timestamp,
            lastAccessed=timestamp,
            version=0,
        )

    def get_or_create(self, user_id: UserId, course_id: CourseId) -> CourseProgressModel:
        """
        Returns the user's progress record for a course, creating an empty one on first access.
        Creation is a conditional put; if a concurrent request created the record first,
        the winner's record is re-read and returned.
        """
        existing = self.get_course_progress(user_id, course_id)
        if existing:
            return existing

        _LOGGER.info(f"No existing progress for user {user_id}, course {course_id}. Creating new item.")
        new_record = self._build_new_record(user_id, course_id)
        try:
            self.table.put_item(
                Item=new_record.model_dump(exclude_none=True),
                ConditionExpression="attribute_not_exists(userId)",
            )
            _LOGGER.info(f"Created progress for user {user_id}, course {course_id}.")
            return new_record
        except ClientError as e:
            if e.response["Error"]["Code"] != "ConditionalCheckFailedException":
                _LOGGER.error(
                    f"Failed to create progress for {user_id}, course {course_id}: {e.response['Error']['Message']}"
                )
                raise

        _LOGGER.info(f"Progress for user {user_id}, course {course_id} was created concurrently. Re-reading.")
        winner = self.get_course_progress(user_id, course_id)
        if winner is None:
            raise ConcurrencyConflictError(user_id, course_id, "Progress record vanished after creation conflict.")
        return winner

    def save_course_progress(self, record: CourseProgressModel) -> CourseProgressModel:
        """
        Persists the full record if nobody else has written it since it was read.
        On success the record's version is advanced in place.

        :raises ConcurrencyConflictError: If the stored version no longer matches record.version.
        """
        expected_version = record.version
        item_to_put = record.model_dump(exclude_none=True)
        item_to_put["version"] = expected_version + 1

        try:
            self.table.put_item(
                Item=item_to_put,
                ConditionExpression="#version = :expected_version",
                ExpressionAttributeNames={"#version": "version"},
                ExpressionAttributeValues={":expected_version": expected_version},
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                _LOGGER.warning(
                    f"Version conflict saving progress for user {record.userId}, course {record.courseId} "
                    f"(expected version {expected_version})."
                )
                raise ConcurrencyConflictError(
                    record.userId, record.courseId, f"Expected version {expected_version} is stale."
                ) from e
            _LOGGER.error(
                f"Failed to save progress for {record.userId}, course {record.courseId}: "
                f"{e.response['Error']['Message']}"
            )
            raise

        record.version = expected_version + 1
        _LOGGER.info(
            f"Saved progress for user {record.userId}, course {record.courseId} at version {record.version}."
        )
        return record

    def get_all_course_progress_for_user(self, user_id: UserId) -> list[CourseProgressModel]:
        """
        Retrieves all course progress items for a given user by querying on the partition key.
        """
        _LOGGER.info(f"Fetching all course progress for user_id: {user_id}")
        progress_items: list[CourseProgressModel] = []
        query_kwargs: dict[str, typing.Any] = {"KeyConditionExpression": Key("userId").eq(user_id)}
        try:
            while True:
                response = self.table.query(**query_kwargs)
                progress_items.extend(self._parse_items(response.get("Items", [])))
                if "LastEvaluatedKey" not in response:
                    break
                _LOGGER.info(f"Fetching next page of course progress for user_id: {user_id}")
                query_kwargs["ExclusiveStartKey"] = response["LastEvaluatedKey"]
        except ClientError as e:
            _LOGGER.error(f"Failed to query course progress for user {user_id}: {e.response['Error']['Message']}")
            raise
        return progress_items

    def get_course_progress_page(
        self,
        course_id: CourseId,
        limit: int = 50,
        last_evaluated_key: typing.Optional[dict[str, typing.Any]] = None,
    ) -> tuple[list[CourseProgressModel], typing.Optional[dict[str, typing.Any]]]:
        """
        Retrieves one page of progress records for a course from the course index.

        Returns a list of Pydantic models and the pagination key.
        """
        query_kwargs: dict[str, typing.Any] = {
            "IndexName": self.GSI_COURSE_INDEX_NAME,
            "KeyConditionExpression": Key("courseId").eq(course_id),
            "Limit": limit,
        }
        if last_evaluated_key:
            query_kwargs["ExclusiveStartKey"] = last_evaluated_key

        try:
            response = self.table.query(**query_kwargs)
        except ClientError as e:
            _LOGGER.error(f"Failed to query progress for course {course_id}: {e.response['Error']['Message']}")
            raise

        items = self._parse_items(response.get("Items", []))
        new_last_evaluated_key = response.get("LastEvaluatedKey")
        _LOGGER.info(f"Found {len(items)} progress items for course {course_id}. Has more: {bool(new_last_evaluated_key)}")
        return items, new_last_evaluated_key

    def iter_course_progress(self, course_id: CourseId, page_size: int = 100) -> typing.Iterator[CourseProgressModel]:
        """
        Streams every progress record of a course, one page in memory at a time.
        """
        last_evaluated_key: typing.Optional[dict[str, typing.Any]] = None
        while True:
            items, last_evaluated_key = self.get_course_progress_page(
                course_id, limit=page_size, last_evaluated_key=last_evaluated_key
            )
            yield from items
            if not last_evaluated_key:
                return

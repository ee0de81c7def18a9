import json
import logging
import typing

from pydantic import ValidationError

from course_progress_backend.cloudwatch.metrics import MetricsManager
from course_progress_backend.dynamodb.course_progress_table import ConcurrencyConflictError, CourseProgressTable
from course_progress_backend.dynamodb.lesson_catalog_table import LessonCatalogTable
from course_progress_backend.models.course_progress_models import (
    CompleteLessonInputModel,
    CourseStudentsProgressResponseModel,
    TrackLessonProgressInputModel,
    UserCoursesProgressResponseModel,
)
from course_progress_backend.progress.course_progress_service import CourseProgressService
from course_progress_backend.progress.lesson_progress_updater import InvalidProgressValueError
from course_progress_backend.utils.apig_utils import (
    ErrorCode,
    create_error_response,
    format_lambda_response,
    get_event_body,
    get_last_evaluated_key,
    get_method,
    get_pagination_limit,
    get_path,
    get_query_string_parameters,
    get_user_id_from_event,
    get_user_role_from_event,
)
from course_progress_backend.utils.aws_env_vars import (
    get_course_progress_table_name,
    get_course_stats_page_size,
    get_lesson_catalog_table_name,
    get_max_write_attempts,
    get_metrics_namespace,
)
from course_progress_backend.utils.base_types import CourseId, UserId
from course_progress_backend.utils.input_validator import InputValidator, SuspiciousInputError

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

STATS_ROLES = ("instructor", "admin")


def _describe_for_logging(value: typing.Any) -> str:
    try:
        text = repr(value)
    except ValueError:
        # ints past the interpreter's str conversion limit
        text = f"<{type(value).__name__} too large to display>"
    return InputValidator.sanitize_for_logging(text)


class CourseProgressApiHandler:
    def __init__(self, progress_service: CourseProgressService, metrics_manager: MetricsManager):
        self.progress_service = progress_service
        self.metrics_manager = metrics_manager

    def _handle_get_user_courses(self, user_id: UserId, event: dict) -> dict:
        summaries = self.progress_service.get_user_courses_progress(user_id)
        response_model = UserCoursesProgressResponseModel(userId=user_id, courses=summaries)
        return format_lambda_response(200, response_model.model_dump(exclude_none=True), event=event)

    def _handle_get_course_progress(self, user_id: UserId, course_id: CourseId, event: dict) -> dict:
        _LOGGER.info(f"Fetching progress summary for user {user_id}, course {course_id}")
        summary = self.progress_service.get_course_progress(user_id, course_id)
        return format_lambda_response(200, summary.model_dump(exclude_none=True), event=event)

    def _handle_track_request(self, user_id: UserId, course_id: CourseId, event: dict) -> dict:
        if not event.get("body"):
            _LOGGER.error("Request body is missing for lesson progress tracking.")
            return create_error_response(ErrorCode.VALIDATION_ERROR, "Request body is missing.", event=event)

        track_input = TrackLessonProgressInputModel.model_validate_json(get_event_body(event))
        record = self.progress_service.track_lesson_progress(
            user_id=user_id,
            course_id=course_id,
            lesson_id=track_input.lessonId,
            percent=track_input.progress,
            time_spent_seconds=track_input.timeSpent,
            notes=track_input.notes,
        )
        return format_lambda_response(200, record.model_dump(exclude_none=True), event=event)

    def _handle_complete_request(self, user_id: UserId, course_id: CourseId, event: dict) -> dict:
        if not event.get("body"):
            _LOGGER.error("Request body is missing for lesson completion.")
            return create_error_response(ErrorCode.VALIDATION_ERROR, "Request body is missing.", event=event)

        complete_input = CompleteLessonInputModel.model_validate_json(get_event_body(event))
        self.progress_service.complete_lesson(
            user_id=user_id,
            course_id=course_id,
            lesson_id=complete_input.lessonId,
            time_spent_seconds=complete_input.timeSpent,
            notes=complete_input.notes,
        )
        summary = self.progress_service.get_course_progress(user_id, course_id)
        return format_lambda_response(200, summary.model_dump(exclude_none=True), event=event)

    def _handle_get_course_stats(self, user_id: UserId, course_id: CourseId, event: dict) -> dict:
        role = get_user_role_from_event(event)
        if role not in STATS_ROLES:
            _LOGGER.warning(f"Forbidden: user {user_id} with role {role} requested stats for course {course_id}.")
            return create_error_response(
                ErrorCode.AUTHORIZATION_FAILED, "Not authorized to view course stats", event=event
            )

        stats = self.progress_service.get_course_stats(course_id)
        return format_lambda_response(200, stats.model_dump(exclude_none=True), event=event)

    def _handle_get_course_students(self, user_id: UserId, course_id: CourseId, event: dict) -> dict:
        role = get_user_role_from_event(event)
        if role not in STATS_ROLES:
            _LOGGER.warning(f"Forbidden: user {user_id} with role {role} requested students of course {course_id}.")
            return create_error_response(ErrorCode.AUTHORIZATION_FAILED, event=event)

        query_params = get_query_string_parameters(event)
        summaries, next_last_key = self.progress_service.get_course_students_progress(
            course_id,
            limit=get_pagination_limit(query_params),
            last_evaluated_key=get_last_evaluated_key(query_params),
        )
        response_model = CourseStudentsProgressResponseModel(
            courseId=course_id, students=summaries, lastEvaluatedKey=next_last_key
        )
        return format_lambda_response(200, response_model.model_dump(exclude_none=True), event=event)

    def _route(self, http_method: str, path_parts: list[str], user_id: UserId, event: dict) -> dict:
        if path_parts == ["progress"] and http_method == "GET":
            return self._handle_get_user_courses(user_id, event)

        # /progress/course/{courseId}[/action]
        if len(path_parts) in (3, 4) and path_parts[0] == "progress" and path_parts[1] == "course":
            course_id = CourseId(path_parts[2])
            action = path_parts[3] if len(path_parts) == 4 else None

            if action is None and http_method == "GET":
                return self._handle_get_course_progress(user_id, course_id, event)
            if action == "track" and http_method == "POST":
                return self._handle_track_request(user_id, course_id, event)
            if action == "complete" and http_method == "POST":
                return self._handle_complete_request(user_id, course_id, event)
            if action == "stats" and http_method == "GET":
                return self._handle_get_course_stats(user_id, course_id, event)
            if action == "students" and http_method == "GET":
                return self._handle_get_course_students(user_id, course_id, event)

        _LOGGER.warning(f"Unsupported path or method for Course Progress: {http_method} {'/'.join(path_parts)}")
        return create_error_response(ErrorCode.RESOURCE_NOT_FOUND, event=event)

    def handle(self, event: dict) -> dict:
        user_id = get_user_id_from_event(event)
        if not user_id:
            return create_error_response(ErrorCode.AUTHENTICATION_FAILED, event=event)

        http_method = get_method(event).upper()
        path = get_path(event)
        path_parts = [part for part in path.strip("/").split("/") if part]

        _LOGGER.info(f"CourseProgressApiHandler: {http_method} {path} for user: {user_id}")

        try:
            return self._route(http_method, path_parts, user_id, event)

        except ValidationError as e:
            _LOGGER.error(f"Progress request body validation error: {e.errors()}", exc_info=True)
            return create_error_response(
                ErrorCode.VALIDATION_ERROR, details=e.errors(include_url=False), event=event
            )
        except json.JSONDecodeError:
            _LOGGER.error("Progress request body is not valid JSON.", exc_info=True)
            return create_error_response(ErrorCode.VALIDATION_ERROR, event=event)
        except InvalidProgressValueError as ipe:
            rejected_value = _describe_for_logging(ipe.value)
            _LOGGER.warning(f"Rejected progress value {rejected_value} from user {user_id}: {ipe.message}")
            self.metrics_manager.put_metric("InvalidProgressValue", 1)
            return create_error_response(ErrorCode.VALIDATION_ERROR, ipe.message, event=event)
        except SuspiciousInputError as se:
            _LOGGER.warning(f"Suspicious progress input from user {user_id}: {se}")
            return create_error_response(ErrorCode.VALIDATION_ERROR, str(se), event=event)
        except ConcurrencyConflictError as ce:
            _LOGGER.error(f"Concurrency conflict for user {user_id}, course {ce.course_id}: {ce.message}")
            return create_error_response(ErrorCode.CONCURRENCY_CONFLICT, event=event)
        except Exception as e:
            _LOGGER.error(f"Unexpected error in CourseProgressApiHandler for user {user_id}: {str(e)}", exc_info=True)
            return create_error_response(ErrorCode.INTERNAL_ERROR, event=event)


def course_progress_lambda_handler(event: dict[str, typing.Any], context: typing.Any) -> dict[str, typing.Any]:
    _LOGGER.debug("Global course_progress_lambda_handler received event.")
    metrics_manager = MetricsManager(get_metrics_namespace())

    try:
        lesson_catalog = LessonCatalogTable(get_lesson_catalog_table_name())
        progress_service = CourseProgressService(
            progress_table=CourseProgressTable(get_course_progress_table_name(), lesson_catalog),
            lesson_catalog=lesson_catalog,
            metrics_manager=metrics_manager,
            max_write_attempts=get_max_write_attempts(),
            stats_page_size=get_course_stats_page_size(),
        )
        api_handler = CourseProgressApiHandler(progress_service=progress_service, metrics_manager=metrics_manager)
        return api_handler.handle(event)

    except ValueError as ve:
        _LOGGER.critical(f"Configuration error in course_progress_lambda_handler: {str(ve)}", exc_info=True)
        return create_error_response(ErrorCode.INTERNAL_ERROR, "Server configuration error")
    except Exception as e:
        _LOGGER.critical(f"Error during CourseProgressApiHandler: {str(e)}", exc_info=True)
        return create_error_response(ErrorCode.INTERNAL_ERROR)
    finally:
        metrics_manager.flush()

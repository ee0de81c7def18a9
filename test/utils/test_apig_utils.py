import json

from course_progress_backend.utils.apig_utils import (
    ErrorCode,
    create_error_response,
    format_lambda_response,
    get_event_body,
    get_last_evaluated_key,
    get_method,
    get_pagination_limit,
    get_query_string_parameters,
    get_user_id_from_event,
    get_user_role_from_event,
)


def test_get_event_body_1() -> None:
    event_body = {"body": "hello everyone"}
    assert get_event_body(event_body) == b"hello everyone"


def test_get_event_body_2() -> None:
    event_body = {
        "body": "aGVsbG8gZXZlcnlvbmU=",
        "isBase64Encoded": True,
    }
    assert get_event_body(event_body) == b"hello everyone"


def test_get_method_1() -> None:
    event = {"requestContext": {"http": {"method": "POST"}}}
    assert get_method(event) == "POST"


def test_get_method_2() -> None:
    event = {"requestContext": {}}
    assert get_method(event) == "UNKNOWN"


def test_get_user_id_from_event_1() -> None:
    event = {"requestContext": {"authorizer": {"lambda": {"email": "student@example.edu", "sub": "1234"}}}}

    assert get_user_id_from_event(event) == "1234"


def test_get_user_id_from_event_2() -> None:
    event = {"requestContext": {}}

    assert get_user_id_from_event(event) is None


def test_get_user_role_from_event_1() -> None:
    event = {"requestContext": {"authorizer": {"lambda": {"sub": "1234", "role": "Instructor"}}}}

    assert get_user_role_from_event(event) == "instructor"


def test_get_user_role_from_event_defaults_to_student() -> None:
    event = {"requestContext": {"authorizer": {"lambda": {"sub": "1234"}}}}

    assert get_user_role_from_event(event) == "student"


def test_get_query_string_parameters_when_absent() -> None:
    assert get_query_string_parameters({"queryStringParameters": None}) == {}


def test_get_pagination_limit() -> None:
    assert get_pagination_limit(None) == 50
    assert get_pagination_limit({"limit": "20"}) == 20
    assert get_pagination_limit({"limit": "twenty"}) == 50


def test_get_last_evaluated_key() -> None:
    key = {"userId": "u1", "courseId": "c1"}

    assert get_last_evaluated_key({"lastEvaluatedKey": json.dumps(key)}) == key
    assert get_last_evaluated_key({"lastEvaluatedKey": "{not json"}) is None
    assert get_last_evaluated_key({}) is None


def test_format_lambda_response_1() -> None:
    ret = format_lambda_response(200, {"hey": "there"})
    assert ret["statusCode"] == 200
    assert len(ret["headers"]) == 4
    assert ret["headers"]["Content-Type"] == "application/json"
    assert ret["headers"]["Access-Control-Allow-Origin"] == "*"
    assert ret["headers"]["Access-Control-Allow-Methods"] == "OPTIONS,GET,POST"
    assert ret["body"] == '{"hey": "there"}'


def test_format_lambda_response_2() -> None:
    ret = format_lambda_response(200, None, additional_headers={"hi": "you"})
    assert len(ret["headers"]) == 5
    assert ret["headers"]["hi"] == "you"
    assert ret["body"] is None


def test_format_lambda_response_3() -> None:
    ret = format_lambda_response(200, {"hey": "there"}, event={"headers": {"origin": "evil.com"}})
    assert ret["headers"]["Access-Control-Allow-Origin"] == "null"


def test_format_lambda_response_4() -> None:
    ret = format_lambda_response(200, {"hey": "there"}, event={"headers": {"origin": "https://example.github.io"}})
    assert ret["headers"]["Access-Control-Allow-Origin"] == "https://example.github.io"


def test_format_lambda_response_5() -> None:
    ret = format_lambda_response(200, {"hey": "there"}, event={"headers": {"origin": "http://localhost:5173"}})
    assert ret["headers"]["Access-Control-Allow-Origin"] == "http://localhost:5173"


def test_create_error_response_1() -> None:
    response = create_error_response(ErrorCode.VALIDATION_ERROR)

    assert response["statusCode"] == 400
    body = json.loads(response["body"])
    assert body["message"] == "Invalid request data"
    assert body["errorCode"] == "VALIDATION_ERROR"
    assert "details" not in body
    assert "Access-Control-Allow-Origin" in response["headers"]


def test_create_error_response_2() -> None:
    details = [{"loc": ["progress"], "msg": "Field required", "type": "missing"}]
    response = create_error_response(ErrorCode.VALIDATION_ERROR, "Request validation failed", details=details)

    body = json.loads(response["body"])
    assert body["message"] == "Request validation failed"
    assert body["details"] == details


def test_create_error_response_3() -> None:
    test_cases = [
        (ErrorCode.VALIDATION_ERROR, 400, "VALIDATION_ERROR"),
        (ErrorCode.AUTHENTICATION_FAILED, 401, "AUTHENTICATION_FAILED"),
        (ErrorCode.AUTHORIZATION_FAILED, 403, "AUTHORIZATION_FAILED"),
        (ErrorCode.RESOURCE_NOT_FOUND, 404, "RESOURCE_NOT_FOUND"),
        (ErrorCode.METHOD_NOT_ALLOWED, 405, "METHOD_NOT_ALLOWED"),
        (ErrorCode.CONCURRENCY_CONFLICT, 409, "CONCURRENCY_CONFLICT"),
        (ErrorCode.RATE_LIMIT_EXCEEDED, 429, "RATE_LIMIT_EXCEEDED"),
        (ErrorCode.INTERNAL_ERROR, 500, "INTERNAL_ERROR"),
    ]

    for error_code, expected_status, expected_code_string in test_cases:
        response = create_error_response(error_code)
        assert response["statusCode"] == expected_status
        body = json.loads(response["body"])
        assert body["errorCode"] == expected_code_string
        assert body["message"] == error_code.default_message

import logging
from typing import Optional

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)


class SuspiciousInputError(ValueError):
    pass


class InputValidator:
    """
    Validates free-text and identifier input using objective, measurable criteria.

    Protection mechanisms:
    - Length limits per field type
    - Control character restrictions
    - Character composition checks
    """

    MAX_LENGTHS = {
        "notes": 1000,
        "lessonId": 128,
        "courseId": 128,
    }

    # Identifiers end up in DynamoDB keys and log lines, so no control characters at all
    IDENTIFIER_FIELDS = ("lessonId", "courseId")

    MAX_CONTROL_CHAR_PERCENTAGE = 5

    MAX_CONSECUTIVE_SPECIAL_CHARS = 10

    @classmethod
    def validate_lesson_input(
        cls,
        course_id: str,
        lesson_id: str,
        notes: Optional[str] = None,
    ) -> None:
        """
        Validate the identifiers and optional notes of a lesson progress submission.

        :raises SuspiciousInputError: If input validation fails
        """
        cls.validate_identifier(course_id, "courseId")
        cls.validate_identifier(lesson_id, "lessonId")

        if notes:
            cls.validate_field(notes, "notes")

    @classmethod
    def validate_identifier(cls, value: str, field_name: str) -> None:
        if not isinstance(value, str) or not value.strip():
            raise SuspiciousInputError(f"{field_name} must be a non-empty string")

        max_length = cls.MAX_LENGTHS.get(field_name, 128)
        if len(value) > max_length:
            _LOGGER.warning(f"Length violation: {field_name} is {len(value)} chars (max {max_length})")
            raise SuspiciousInputError(f"{field_name} exceeds maximum length of {max_length} characters")

        if any(ord(c) < 32 or c == "\x7f" for c in value):
            _LOGGER.warning(f"Control characters in identifier {field_name}")
            raise SuspiciousInputError(f"{field_name} contains control characters")

    @classmethod
    def validate_field(cls, text: str, field_name: str) -> None:
        """
        Validate a single free-text field.

        :raises SuspiciousInputError: If input validation fails
        """
        if not isinstance(text, str):
            raise SuspiciousInputError(f"{field_name} must be a string")

        max_length = cls.MAX_LENGTHS.get(field_name, 1000)
        if len(text) > max_length:
            _LOGGER.warning(f"Length violation: {field_name} is {len(text)} chars (max {max_length})")
            raise SuspiciousInputError(f"{field_name} exceeds maximum length of {max_length} characters")

        if not text:
            return

        control_chars = sum(1 for c in text if ord(c) < 32 and c not in "\n\r\t")
        if control_chars > 0:
            control_percentage = (control_chars / len(text)) * 100
            if control_percentage > cls.MAX_CONTROL_CHAR_PERCENTAGE:
                _LOGGER.warning(f"Excessive control characters in {field_name}: {control_percentage:.1f}%")
                raise SuspiciousInputError(f"{field_name} contains too many control characters")

        max_consecutive = 0
        current_consecutive = 0
        for char in text:
            if not char.isalnum() and not char.isspace():
                current_consecutive += 1
                max_consecutive = max(max_consecutive, current_consecutive)
            else:
                current_consecutive = 0

        if max_consecutive > cls.MAX_CONSECUTIVE_SPECIAL_CHARS:
            _LOGGER.warning(f"Excessive consecutive special chars in {field_name}: {max_consecutive}")
            raise SuspiciousInputError(f"{field_name} contains unusual character sequences")

    @classmethod
    def sanitize_for_logging(cls, text: str, max_length: int = 100) -> str:
        """
        Sanitize text for safe logging (via truncation).
        """
        if len(text) > max_length:
            return text[:max_length] + "..."
        return text

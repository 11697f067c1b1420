"""Program exceptions: placeholder values a program may submit for core fields.

A program granted an exception for ``schema.core_field`` may submit the
exception value (e.g. "Unknown") where the dictionary would otherwise reject
it. Schema errors on such values are dropped. A missing required value is
still an error because an exception replaces a value, it does not omit one.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from ..config.constants import PROGRAM_EXCEPTION_VALUES
from ..dictionary.entities import SchemaValidationError, SchemaValidationErrorType
from ..errors import InvalidArgumentError


@dataclass
class ProgramException:
    program_id: str
    schema: str
    core_field: str
    exception_value: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgramException":
        return cls(
            program_id=data["program_id"],
            schema=data["schema"],
            core_field=data["core_field"],
            exception_value=data["exception_value"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "program_id": self.program_id,
            "schema": self.schema,
            "core_field": self.core_field,
            "exception_value": self.exception_value,
        }


def normalize_exception_value(value: Any) -> str:
    """Trim and sentence-case a value so "not applicable" matches "Not applicable"."""
    text = str(value or "").strip()
    if not text:
        return ""
    return text[0].upper() + text[1:].lower()


def check_program_exceptions(exceptions: List[ProgramException]) -> None:
    """
    Reject exception values outside the allowed set.

    Raises:
        InvalidArgumentError: If any exception names an unknown value or no field.
    """
    allowed = {normalize_exception_value(v) for v in PROGRAM_EXCEPTION_VALUES}
    for exception in exceptions:
        if not exception.schema or not exception.core_field:
            raise InvalidArgumentError("Program exceptions need a schema and a core field")
        if normalize_exception_value(exception.exception_value) not in allowed:
            raise InvalidArgumentError(
                f"Exception value '{exception.exception_value}' for "
                f"{exception.schema}.{exception.core_field} must be one of "
                f"{PROGRAM_EXCEPTION_VALUES}"
            )


def excepted_value(
    exceptions: List[ProgramException], entity_type: str, field_name: str, raw_value: Any
) -> Any:
    """
    Return the exception value a raw field value stands for, or None.

    Args:
        exceptions: Exceptions granted to the program.
        entity_type: Schema the record belongs to.
        field_name: Field holding the value.
        raw_value: Submitted raw value.
    """
    submitted = normalize_exception_value(raw_value)
    if not submitted:
        return None
    for exception in exceptions:
        if (
            exception.schema == entity_type
            and exception.core_field == field_name
            and normalize_exception_value(exception.exception_value) == submitted
        ):
            return normalize_exception_value(exception.exception_value)
    return None


def apply_program_exceptions(
    exceptions: List[ProgramException],
    entity_type: str,
    raw_record: Dict[str, Any],
    processed_record: Dict[str, Any],
    errors: List[SchemaValidationError],
) -> List[SchemaValidationError]:
    """
    Drop schema errors covered by an exception and store the exception value.

    ``processed_record`` is updated in place for every field an exception
    covers.

    Returns:
        The errors that remain.
    """
    if not exceptions:
        return errors

    remaining = []
    for error in errors:
        value = None
        if error.error_type != SchemaValidationErrorType.MISSING_REQUIRED_FIELD:
            value = excepted_value(
                exceptions, entity_type, error.field_name, raw_record.get(error.field_name)
            )
        if value is None:
            remaining.append(error)
        else:
            processed_record[error.field_name] = value
    return remaining

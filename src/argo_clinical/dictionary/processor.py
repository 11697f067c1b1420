"""Record processor: validate and type-convert raw records against a schema.

A raw record is a mapping of field name to string (as read from a TSV row),
a list of strings for array fields, or None. Processing runs in stages and
each stage only looks at fields that passed the earlier ones:

1. Populate defaults for empty fields.
2. Structural checks: unknown fields, array shape, required fields, value types.
3. Conversion from raw strings to the declared types.
4. Restriction checks: regex, range, code list, scripts.

Everything here is pure and safe to run for many records in parallel.
"""

import math
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..config.logging_config import get_logger
from ..errors import InvalidArgumentError
from .entities import (
    BatchProcessingResult,
    FieldDefinition,
    RecordProcessingResult,
    SchemaDefinition,
    SchemasDictionary,
    SchemaValidationError,
    SchemaValidationErrorType,
    ValueType,
)
from .script_evaluator import call_validate_function, evaluate_expression

logger = get_logger("dictionary.processor")

ARRAY_DELIMITER = ","
SCRIPT_FAILURE_MESSAGE = "failed to run script validation, check script and the input"
NOT_PERMISSIBLE_MESSAGE = "The value is not permissible for this field."


# =============================================================================
# Error messages
# =============================================================================


def _regex_message(field_name: str, info: Dict[str, Any]) -> str:
    message = (
        "The value is not a permissible for this field, it must meet the regular "
        f"expression: \"{info.get('regex')}\"."
    )
    examples = info.get("examples")
    if examples:
        message += f" Examples: {examples}"
    return message


ERROR_MESSAGES: Dict[SchemaValidationErrorType, Callable[[str, Dict[str, Any]], str]] = {
    SchemaValidationErrorType.INVALID_FIELD_VALUE_TYPE: lambda f, i: NOT_PERMISSIBLE_MESSAGE,
    SchemaValidationErrorType.INVALID_ENUM_VALUE: lambda f, i: NOT_PERMISSIBLE_MESSAGE,
    SchemaValidationErrorType.INVALID_BY_REGEX: _regex_message,
    SchemaValidationErrorType.INVALID_BY_RANGE: lambda f, i: "Value is out of permissible range",
    SchemaValidationErrorType.INVALID_BY_SCRIPT: lambda f, i: str(i.get("message", "")),
    SchemaValidationErrorType.MISSING_REQUIRED_FIELD: lambda f, i: f"{f} is a required field.",
}


def schema_error_message(
    error_type: SchemaValidationErrorType, field_name: str, info: Dict[str, Any]
) -> str:
    """Render the user-facing message for a schema error.

    Types without a dedicated template fall back to the type name.
    """
    render = ERROR_MESSAGES.get(error_type)
    if render is None:
        return error_type.value
    return render(field_name, info)


def _build_error(
    error_type: SchemaValidationErrorType,
    field_name: str,
    index: int,
    entity_name: str,
    info: Optional[Dict[str, Any]] = None,
) -> SchemaValidationError:
    info = info or {}
    return SchemaValidationError(
        error_type=error_type,
        field_name=field_name,
        index=index,
        message=schema_error_message(error_type, field_name, info),
        info=info,
        entity_name=entity_name,
    )


# =============================================================================
# Value helpers
# =============================================================================


def is_empty(value: Any) -> bool:
    """True for None, blank strings and lists holding only blank values."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return all(is_empty(v) for v in value)
    return False


def to_raw_string(value: Any) -> str:
    """Convert a stored (typed) value back to its raw submission form."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ARRAY_DELIMITER.join(to_raw_string(v) for v in value)
    return str(value)


def stringify_record(record: Dict[str, Any]) -> Dict[str, str]:
    """Turn a typed record (e.g. stored clinical info) into a raw record."""
    return {name: to_raw_string(value) for name, value in record.items()}


def _as_values(field_def: FieldDefinition, value: Any) -> List[str]:
    """Split a raw value into its individual non-empty elements."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    elif field_def.is_array:
        items = str(value).split(ARRAY_DELIMITER)
    else:
        items = [str(value)]
    return [item.strip() for item in items if item.strip() != ""]


def _is_valid_type(value_type: ValueType, raw: str) -> bool:
    if value_type == ValueType.STRING:
        return True
    if value_type == ValueType.BOOLEAN:
        return raw.lower() in ("true", "false")
    try:
        number = float(raw)
    except ValueError:
        return False
    if not math.isfinite(number):
        return False
    if value_type == ValueType.INTEGER:
        return number.is_integer()
    return True


def _convert_value(field_def: FieldDefinition, raw: str) -> Any:
    value_type = field_def.value_type
    if value_type == ValueType.INTEGER:
        try:
            return int(raw)
        except ValueError:
            # integral floats such as "3.0"
            return int(float(raw))
    if value_type == ValueType.NUMBER:
        return float(raw)
    if value_type == ValueType.BOOLEAN:
        return raw.lower() == "true"
    code_list = field_def.restrictions.code_list
    if code_list:
        # normalise to the code list spelling, matching case-insensitively
        for code in code_list:
            if str(code).lower() == raw.lower():
                return str(code)
    return raw


# =============================================================================
# Stage 1: defaults
# =============================================================================


def _populate_defaults(schema: SchemaDefinition, record: Dict[str, Any]) -> Dict[str, Any]:
    populated = dict(record)
    for field_def in schema.fields:
        default = field_def.default
        if default is not None and is_empty(populated.get(field_def.name)):
            populated[field_def.name] = to_raw_string(default)
    return populated


# =============================================================================
# Stage 2: structural validation
# =============================================================================


def _validate_structure(
    schema: SchemaDefinition, record: Dict[str, Any], index: int
) -> List[SchemaValidationError]:
    errors: List[SchemaValidationError] = []
    known_fields = set(schema.field_names)

    for name in record:
        if name not in known_fields:
            errors.append(
                _build_error(
                    SchemaValidationErrorType.UNRECOGNIZED_FIELD,
                    name,
                    index,
                    schema.name,
                    {"value": record[name]},
                )
            )

    failed: Set[str] = set()
    for field_def in schema.fields:
        value = record.get(field_def.name)
        if not field_def.is_array and isinstance(value, (list, tuple)):
            errors.append(
                _build_error(
                    SchemaValidationErrorType.INVALID_FIELD_VALUE_TYPE,
                    field_def.name,
                    index,
                    schema.name,
                    {"value": list(value)},
                )
            )
            failed.add(field_def.name)

    for field_def in schema.fields:
        if field_def.name in failed:
            continue
        if field_def.restrictions.required and is_empty(record.get(field_def.name)):
            errors.append(
                _build_error(
                    SchemaValidationErrorType.MISSING_REQUIRED_FIELD,
                    field_def.name,
                    index,
                    schema.name,
                )
            )
            failed.add(field_def.name)

    for field_def in schema.fields:
        if field_def.name in failed:
            continue
        invalid = [
            v
            for v in _as_values(field_def, record.get(field_def.name))
            if not _is_valid_type(field_def.value_type, v)
        ]
        if invalid:
            errors.append(
                _build_error(
                    SchemaValidationErrorType.INVALID_FIELD_VALUE_TYPE,
                    field_def.name,
                    index,
                    schema.name,
                    {"value": invalid},
                )
            )

    return errors


# =============================================================================
# Stage 3: conversion
# =============================================================================


def _convert_record(
    schema: SchemaDefinition, record: Dict[str, Any], skip: Set[str]
) -> Dict[str, Any]:
    converted = dict(record)
    for field_def in schema.fields:
        name = field_def.name
        if name in skip or name not in record:
            continue
        values = [_convert_value(field_def, v) for v in _as_values(field_def, record[name])]
        if field_def.is_array:
            converted[name] = values
        else:
            converted[name] = values[0] if values else None
    return converted


# =============================================================================
# Stage 4: restriction validation
# =============================================================================


def _field_values(field_def: FieldDefinition, value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _out_of_range(field_def: FieldDefinition, value: Any) -> bool:
    bounds = field_def.restrictions.range
    if bounds is None or not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    if bounds.min is not None and value < bounds.min:
        return True
    if bounds.max is not None and value > bounds.max:
        return True
    if bounds.exclusive_min is not None and value <= bounds.exclusive_min:
        return True
    if bounds.exclusive_max is not None and value >= bounds.exclusive_max:
        return True
    return False


def _not_in_code_list(field_def: FieldDefinition, value: Any) -> bool:
    code_list = field_def.restrictions.code_list
    if not code_list:
        return False
    if field_def.value_type in (ValueType.INTEGER, ValueType.NUMBER):
        try:
            return value not in [float(code) for code in code_list]
        except (TypeError, ValueError):
            return True
    return str(value) not in [str(code) for code in code_list]


def run_script(
    script: str, row: Dict[str, Any], field_value: Any, field_name: str
) -> Tuple[bool, str]:
    """Evaluate one dictionary script restriction.

    A script is either a single expression over ``row``, ``field`` and
    ``name``, or a block defining ``validate(row, field, name)``. It returns a
    bool or a mapping with ``valid`` and ``message`` keys. Scripts run through
    the restricted evaluator in ``script_evaluator``.

    Returns:
        Tuple of (valid, message).

    Raises:
        ScriptError: If the script leaves the allowed subset.
    """
    source = script.strip()
    if source.startswith("def "):
        result = call_validate_function(source, dict(row), field_value, field_name)
    else:
        bindings = {"row": dict(row), "field": field_value, "name": field_name}
        result = evaluate_expression(source, bindings)

    if isinstance(result, dict):
        return bool(result.get("valid")), str(result.get("message") or "")
    return bool(result), ""


def _validate_restrictions(
    schema: SchemaDefinition,
    record: Dict[str, Any],
    index: int,
    skip: Set[str],
) -> List[SchemaValidationError]:
    errors: List[SchemaValidationError] = []
    failed: Set[str] = set(skip)

    def checked_fields() -> Iterable[FieldDefinition]:
        for field_def in schema.fields:
            if field_def.name not in failed and not is_empty(record.get(field_def.name)):
                yield field_def

    for field_def in checked_fields():
        regex = field_def.restrictions.regex
        if not regex or field_def.value_type != ValueType.STRING:
            continue
        pattern = re.compile(regex)
        values = _field_values(field_def, record[field_def.name])
        invalid = [v for v in values if not pattern.search(str(v))]
        if invalid:
            errors.append(
                _build_error(
                    SchemaValidationErrorType.INVALID_BY_REGEX,
                    field_def.name,
                    index,
                    schema.name,
                    {"regex": regex, "examples": field_def.examples, "value": invalid},
                )
            )
            failed.add(field_def.name)

    for field_def in list(checked_fields()):
        values = _field_values(field_def, record[field_def.name])
        invalid = [v for v in values if _out_of_range(field_def, v)]
        if invalid:
            errors.append(
                _build_error(
                    SchemaValidationErrorType.INVALID_BY_RANGE,
                    field_def.name,
                    index,
                    schema.name,
                    {"value": invalid, **field_def.restrictions.range.to_dict()},
                )
            )
            failed.add(field_def.name)

    for field_def in list(checked_fields()):
        invalid = [
            v
            for v in _field_values(field_def, record[field_def.name])
            if _not_in_code_list(field_def, v)
        ]
        if invalid:
            errors.append(
                _build_error(
                    SchemaValidationErrorType.INVALID_ENUM_VALUE,
                    field_def.name,
                    index,
                    schema.name,
                    {"value": invalid},
                )
            )
            failed.add(field_def.name)

    for field_def in list(checked_fields()):
        for script in field_def.restrictions.script or []:
            try:
                valid, message = run_script(
                    script, record, record[field_def.name], field_def.name
                )
            except Exception as e:
                logger.debug(f"Script for {schema.name}.{field_def.name} raised: {e}")
                valid, message = False, SCRIPT_FAILURE_MESSAGE
            if not valid:
                errors.append(
                    _build_error(
                        SchemaValidationErrorType.INVALID_BY_SCRIPT,
                        field_def.name,
                        index,
                        schema.name,
                        {
                            "message": message or NOT_PERMISSIBLE_MESSAGE,
                            "value": record[field_def.name],
                        },
                    )
                )
                break

    return errors


# =============================================================================
# Public API
# =============================================================================


def _get_schema(dictionary: SchemasDictionary, entity_name: str) -> SchemaDefinition:
    schema = dictionary.get_schema(entity_name)
    if schema is None:
        raise InvalidArgumentError(
            f"Entity {entity_name} is not defined in dictionary version {dictionary.version}"
        )
    return schema


def process(
    dictionary: SchemasDictionary,
    entity_name: str,
    raw_record: Dict[str, Any],
    index: int = 0,
) -> RecordProcessingResult:
    """
    Run one raw record through an entity schema.

    Args:
        dictionary: Dictionary holding the entity definition.
        entity_name: Name of the entity schema to apply.
        raw_record: Field name to raw value mapping.
        index: Row number reported on every error.

    Returns:
        RecordProcessingResult with the converted record and all field errors.

    Raises:
        InvalidArgumentError: If the entity is not in the dictionary.
    """
    schema = _get_schema(dictionary, entity_name)
    record = _populate_defaults(schema, raw_record)

    errors = _validate_structure(schema, record, index)
    failed = {e.field_name for e in errors}

    converted = _convert_record(schema, record, failed)
    errors.extend(_validate_restrictions(schema, converted, index, failed))

    return RecordProcessingResult(processed_record=converted, validation_errors=errors)


def process_records(
    dictionary: SchemasDictionary,
    entity_name: str,
    records: List[Dict[str, Any]],
) -> BatchProcessingResult:
    """Process a batch of raw records; row numbers are list positions."""
    result = BatchProcessingResult()
    for index, record in enumerate(records):
        processed = process(dictionary, entity_name, record, index)
        result.processed_records.append(processed.processed_record)
        result.validation_errors.extend(processed.validation_errors)
    return result

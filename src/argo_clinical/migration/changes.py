"""Classification of dictionary changes for migration.

A change is "invalidating" when data that was valid under the old version may
fail the new one. Only entities with invalidating changes are re-checked for a
donor during the sweep.
"""

from typing import Any, Dict, List, Optional

from ..config.constants import CLINICAL_ENTITIES, ENTITY_CODE_FIELDS, KNOWN_FIELD_CODE_LISTS
from ..config.logging_config import get_logger
from ..dictionary.entities import ChangeAnalysis, SchemaDefinition, SchemasDictionary, ValueType

logger = get_logger("migration.changes")

# Restriction kind -> change tag prefix. A created or updated restriction of
# these kinds can reject stored values.
TIGHTENING_RESTRICTIONS = {
    "codeList": "CODELIST",
    "regex": "REGEX",
    "script": "SCRIPT",
    "range": "RANGE",
}


def _entity_of(field_path: str) -> str:
    return field_path.split(".")[0]


def _field_of(field_path: str) -> str:
    return field_path.split(".", 1)[1] if "." in field_path else field_path


def _is_required(definition: Optional[Dict[str, Any]]) -> bool:
    restrictions = (definition or {}).get("restrictions") or {}
    return bool(restrictions.get("required"))


def find_invalidating_changes_fields(analysis: ChangeAnalysis) -> List[Dict[str, str]]:
    """
    List the field changes that can invalidate stored data.

    Args:
        analysis: Change analysis between two dictionary versions.

    Returns:
        Entries of ``{"type": <change kind>, "fieldPath": "entity.field"}``.
    """
    invalidating: List[Dict[str, str]] = []

    def add(change_type: str, field_path: str) -> None:
        invalidating.append({"type": change_type, "fieldPath": field_path})

    for kind, tag in TIGHTENING_RESTRICTIONS.items():
        changes = analysis.restrictions_changes[kind]
        for change in changes.created:
            add(f"{tag}_ADDED", change.field)
        for change in changes.updated:
            add(f"{tag}_UPDATED", change.field)

    required = analysis.restrictions_changes["required"]
    for change in required.created + required.updated:
        if change.definition:
            add("REQUIRED_SET", change.field)

    for added in analysis.added_fields:
        if _is_required(added.definition):
            add("REQUIRED_FIELD_ADDED", added.name)

    for field_path in analysis.deleted_fields:
        add("FIELD_REMOVED", field_path)

    for field_path in analysis.is_array_designation_changes:
        add("IS_ARRAY_CHANGED", field_path)

    return invalidating


def find_entities_with_breaking_changes(analysis: ChangeAnalysis) -> List[str]:
    """Entity names with at least one invalidating field change, in first-seen order."""
    entities: List[str] = []
    for change in find_invalidating_changes_fields(analysis):
        entity = _entity_of(change["fieldPath"])
        if entity not in entities:
            entities.append(entity)
    return entities


def find_entities_with_core_designation_changes(analysis: ChangeAnalysis) -> List[str]:
    """
    Entities whose completion stats may change under the new dictionary.

    These are entities that gained a core field, lost a field, or had a field
    moved into or out of the core set.
    """
    paths = [
        added.name
        for added in analysis.added_fields
        if ((added.definition or {}).get("meta") or {}).get("core")
    ]
    paths.extend(analysis.deleted_fields)
    paths.extend(analysis.changed_to_core)
    paths.extend(analysis.changed_from_core)

    entities: List[str] = []
    for path in paths:
        entity = _entity_of(path)
        if entity not in entities:
            entities.append(entity)
    return entities


def breaking_change_fields_by_entity(analysis: ChangeAnalysis) -> Dict[str, List[str]]:
    """Group invalidating changes as ``entity -> [field, ...]``."""
    grouped: Dict[str, List[str]] = {}
    for change in find_invalidating_changes_fields(analysis):
        path = change["fieldPath"]
        fields = grouped.setdefault(_entity_of(path), [])
        field_name = _field_of(path)
        if field_name not in fields:
            fields.append(field_name)
    return grouped


# =============================================================================
# Pre-migration verification
# =============================================================================


def _missing_code_fields(entity: str, schema: Optional[SchemaDefinition]) -> List[str]:
    present = set(schema.field_names) if schema else set()
    return [f for f in ENTITY_CODE_FIELDS.get(entity, []) if f not in present]


def _missing_code_list_values(
    entity: str, schema: Optional[SchemaDefinition]
) -> List[Dict[str, Any]]:
    invalid = []
    for field_name, code_list in KNOWN_FIELD_CODE_LISTS.get(entity, {}).items():
        field_def = schema.get_field(field_name) if schema else None
        allowed = (field_def.restrictions.code_list if field_def else None) or []
        missing = [value for value in code_list if value not in allowed]
        if missing:
            invalid.append({"fieldName": field_name, "missingCodeListValues": missing})
    return invalid


def _prohibited_value_type_changes(
    entity: str,
    value_type_changes: List[str],
    current: SchemasDictionary,
    new_schema: Optional[SchemaDefinition],
) -> List[str]:
    prohibited = []
    current_schema = current.get_schema(entity)
    for path in value_type_changes:
        if _entity_of(path) != entity:
            continue
        field_name = _field_of(path)
        before = current_schema.get_field(field_name) if current_schema else None
        after = new_schema.get_field(field_name) if new_schema else None
        if before is None or after is None:
            logger.error(
                f"Field {field_name} in schema {entity} has a value type change "
                f"but is missing from the current or new dictionary"
            )
            continue
        # integer -> number is the only widening allowed
        if not (before.value_type == ValueType.INTEGER and after.value_type == ValueType.NUMBER):
            prohibited.append(field_name)
    return prohibited


def verify_new_schema(
    current: SchemasDictionary, new: SchemasDictionary, analysis: ChangeAnalysis
) -> Dict[str, Dict[str, Any]]:
    """
    Check that a target dictionary still supports the fields code relies on.

    Args:
        current: Dictionary currently in use.
        new: Migration target dictionary.
        analysis: Change analysis from ``current`` to ``new``.

    Returns:
        ``entity -> {"missingFields", "invalidFieldCodeLists", "valueTypeChanges"}``
        for every entity with a problem. Empty when the target is usable.
        Entities the current dictionary does not define are not checked.
    """
    problems: Dict[str, Dict[str, Any]] = {}
    for entity in CLINICAL_ENTITIES:
        if current.get_schema(entity) is None:
            continue
        new_schema = new.get_schema(entity)
        missing_fields = _missing_code_fields(entity, new_schema)
        invalid_code_lists = _missing_code_list_values(entity, new_schema)
        value_type_changes = _prohibited_value_type_changes(
            entity, analysis.value_type_changes, current, new_schema
        )
        if missing_fields or invalid_code_lists or value_type_changes:
            problems[entity] = {
                "missingFields": missing_fields,
                "invalidFieldCodeLists": invalid_code_lists,
                "valueTypeChanges": value_type_changes,
            }
    return problems

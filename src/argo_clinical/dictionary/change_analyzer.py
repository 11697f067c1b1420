"""Dictionary diffing and change analysis.

``compute_diff`` produces the per-field diff between two dictionary versions
in the same shape the schema service returns from its diff endpoint.
``analyze_changes`` groups such a diff into a ``ChangeAnalysis``.
"""

from typing import Any, Dict, Optional

from ..config.logging_config import get_logger
from .entities import (
    AddedField,
    ChangeAnalysis,
    FieldChange,
    FieldDiff,
    RESTRICTION_KINDS,
    SchemasDictionary,
    SchemasDictionaryDiffs,
)

logger = get_logger("dictionary.change_analyzer")

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"


def _is_change_leaf(node: Any) -> bool:
    return isinstance(node, dict) and "type" in node and node.get("type") in (
        CREATED,
        UPDATED,
        DELETED,
    )


def _diff_values(left: Any, right: Any) -> Optional[Dict[str, Any]]:
    """Recursive diff of two JSON-like values; None when equal."""
    if left == right:
        return None
    if left is None:
        return {"type": CREATED, "data": right}
    if right is None:
        return {"type": DELETED, "data": left}
    if isinstance(left, dict) and isinstance(right, dict):
        result: Dict[str, Any] = {}
        for key in list(left.keys()) + [k for k in right.keys() if k not in left]:
            child = _diff_values(left.get(key), right.get(key))
            if child is not None:
                result[key] = child
        return result or None
    return {"type": UPDATED, "data": right}


def _fields_by_path(dictionary: Optional[SchemasDictionary]) -> Dict[str, Dict[str, Any]]:
    paths: Dict[str, Dict[str, Any]] = {}
    if dictionary is None:
        return paths
    for schema in dictionary.schemas:
        for field_def in schema.fields:
            paths[f"{schema.name}.{field_def.name}"] = field_def.to_dict()
    return paths


def compute_diff(
    left: Optional[SchemasDictionary], right: SchemasDictionary
) -> SchemasDictionaryDiffs:
    """
    Compute the field-level diff between two dictionary versions.

    Args:
        left: Older dictionary (None treats every field as created).
        right: Newer dictionary.

    Returns:
        Mapping of ``entity.field`` to FieldDiff for every changed field.
    """
    before = _fields_by_path(left)
    after = _fields_by_path(right)
    diffs: SchemasDictionaryDiffs = {}

    for path in list(before.keys()) + [p for p in after.keys() if p not in before]:
        left_field = before.get(path)
        right_field = after.get(path)
        diff = _diff_values(left_field, right_field)
        if diff is None:
            continue
        diffs[path] = FieldDiff(before=left_field, after=right_field, diff=diff)

    logger.debug(
        f"Computed diff {left.version if left else None} -> {right.version}: "
        f"{len(diffs)} changed fields"
    )
    return diffs


def _analyze_core_change(field: str, meta_diff: Dict[str, Any], analysis: ChangeAnalysis) -> None:
    if _is_change_leaf(meta_diff):
        # meta block created or deleted as a whole
        data = meta_diff.get("data") or {}
        if not isinstance(data, dict) or not data.get("core"):
            return
        if meta_diff["type"] == CREATED:
            analysis.changed_to_core.append(field)
        elif meta_diff["type"] == DELETED:
            analysis.changed_from_core.append(field)
        return

    core_change = meta_diff.get("core")
    if not _is_change_leaf(core_change):
        return
    if core_change["type"] == DELETED or not core_change.get("data"):
        analysis.changed_from_core.append(field)
    else:
        analysis.changed_to_core.append(field)


def _analyze_restrictions(
    field: str,
    restrictions_diff: Dict[str, Any],
    after: Optional[Dict[str, Any]],
    analysis: ChangeAnalysis,
) -> None:
    if _is_change_leaf(restrictions_diff):
        # whole restrictions block created or deleted, split it per kind
        data = restrictions_diff.get("data") or {}
        for kind in RESTRICTION_KINDS:
            if kind in data:
                analysis.restrictions_changes[kind].add(
                    restrictions_diff["type"], FieldChange(field=field, definition=data[kind])
                )
        return

    after_restrictions = (after or {}).get("restrictions") or {}
    for kind in RESTRICTION_KINDS:
        change = restrictions_diff.get(kind)
        if change is None:
            continue
        if _is_change_leaf(change):
            change_type = change["type"]
            definition = change.get("data")
        else:
            # nested change inside the restriction (e.g. range.min)
            change_type = UPDATED
            definition = after_restrictions.get(kind)
        analysis.restrictions_changes[kind].add(
            change_type, FieldChange(field=field, definition=definition)
        )


def analyze_changes(diffs: SchemasDictionaryDiffs) -> ChangeAnalysis:
    """
    Group a dictionary diff into a ChangeAnalysis.

    Args:
        diffs: Mapping of ``entity.field`` to FieldDiff.

    Returns:
        ChangeAnalysis describing added/deleted fields, restriction changes,
        array designation, value type and core designation changes.
    """
    analysis = ChangeAnalysis()

    for field, field_diff in diffs.items():
        diff = field_diff.diff

        if _is_change_leaf(diff):
            if diff["type"] == CREATED:
                analysis.added_fields.append(AddedField(name=field, definition=diff.get("data")))
            elif diff["type"] == DELETED:
                analysis.deleted_fields.append(field)
            continue

        if "meta" in diff:
            _analyze_core_change(field, diff["meta"], analysis)

        if "restrictions" in diff:
            _analyze_restrictions(field, diff["restrictions"], field_diff.after, analysis)

        if "valueType" in diff:
            analysis.value_type_changes.append(field)

        is_array_change = diff.get("isArray")
        if is_array_change is not None:
            # isArray created as false is not a real change
            created_false = (
                _is_change_leaf(is_array_change)
                and is_array_change["type"] == CREATED
                and is_array_change.get("data") is False
            )
            if not created_false:
                analysis.is_array_designation_changes.append(field)

    return analysis

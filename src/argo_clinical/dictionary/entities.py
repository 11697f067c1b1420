"""Data dictionary model: versioned entity schemas, fields and restrictions.

Dictionaries arrive as JSON/YAML documents from the schema service. The
dataclasses here parse that wire shape (``valueType``, ``isArray``,
``codeList``...) into Python objects and can write it back out unchanged.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ValueType(str, Enum):
    """Declared type of a dictionary field."""

    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"


class SchemaValidationErrorType(str, Enum):
    """Field-level error tags produced by the record processor."""

    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_FIELD_VALUE_TYPE = "INVALID_FIELD_VALUE_TYPE"
    INVALID_BY_REGEX = "INVALID_BY_REGEX"
    INVALID_BY_RANGE = "INVALID_BY_RANGE"
    INVALID_BY_SCRIPT = "INVALID_BY_SCRIPT"
    INVALID_ENUM_VALUE = "INVALID_ENUM_VALUE"
    UNRECOGNIZED_FIELD = "UNRECOGNIZED_FIELD"


RESTRICTION_KINDS = ("codeList", "regex", "script", "required", "range")


@dataclass
class RangeRestriction:
    """Numeric bounds; any bound may be absent."""

    min: Optional[float] = None
    max: Optional[float] = None
    exclusive_min: Optional[float] = None
    exclusive_max: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RangeRestriction":
        return cls(
            min=data.get("min"),
            max=data.get("max"),
            exclusive_min=data.get("exclusiveMin"),
            exclusive_max=data.get("exclusiveMax"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "min": self.min,
            "max": self.max,
            "exclusiveMin": self.exclusive_min,
            "exclusiveMax": self.exclusive_max,
        }
        return {k: v for k, v in out.items() if v is not None}


@dataclass
class FieldRestrictions:
    """Restrictions attached to a field definition."""

    code_list: Optional[List[Union[str, int, float]]] = None
    regex: Optional[str] = None
    script: Optional[List[str]] = None
    required: bool = False
    range: Optional[RangeRestriction] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FieldRestrictions":
        data = data or {}
        script = data.get("script")
        if isinstance(script, str):
            script = [script]
        range_data = data.get("range")
        return cls(
            code_list=data.get("codeList"),
            regex=data.get("regex"),
            script=script,
            required=bool(data.get("required", False)),
            range=RangeRestriction.from_dict(range_data) if range_data else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.code_list is not None:
            out["codeList"] = list(self.code_list)
        if self.regex is not None:
            out["regex"] = self.regex
        if self.script is not None:
            out["script"] = list(self.script)
        if self.required:
            out["required"] = True
        if self.range is not None:
            out["range"] = self.range.to_dict()
        return out


@dataclass
class FieldDefinition:
    """One field of an entity schema."""

    name: str
    value_type: ValueType = ValueType.STRING
    description: str = ""
    meta: Dict[str, Any] = field(default_factory=dict)
    restrictions: FieldRestrictions = field(default_factory=FieldRestrictions)
    is_array: bool = False

    @property
    def is_core(self) -> bool:
        return bool(self.meta.get("core"))

    @property
    def default(self) -> Any:
        return self.meta.get("default")

    @property
    def examples(self) -> Optional[str]:
        return self.meta.get("examples")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldDefinition":
        return cls(
            name=data["name"],
            value_type=ValueType(data.get("valueType", ValueType.STRING.value)),
            description=data.get("description", ""),
            meta=dict(data.get("meta") or {}),
            restrictions=FieldRestrictions.from_dict(data.get("restrictions")),
            is_array=bool(data.get("isArray", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "valueType": self.value_type.value,
            "description": self.description,
        }
        if self.meta:
            out["meta"] = dict(self.meta)
        restrictions = self.restrictions.to_dict()
        if restrictions:
            out["restrictions"] = restrictions
        if self.is_array:
            out["isArray"] = True
        return out


@dataclass
class SchemaDefinition:
    """Definition of one clinical entity (a "file type")."""

    name: str
    description: str = ""
    fields: List[FieldDefinition] = field(default_factory=list)

    def get_field(self, name: str) -> Optional[FieldDefinition]:
        for field_def in self.fields:
            if field_def.name == name:
                return field_def
        return None

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaDefinition":
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            fields=[FieldDefinition.from_dict(f) for f in data.get("fields", [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass
class SchemasDictionary:
    """A named, versioned set of entity schemas."""

    name: str
    version: str
    schemas: List[SchemaDefinition] = field(default_factory=list)

    def get_schema(self, entity_name: str) -> Optional[SchemaDefinition]:
        for schema in self.schemas:
            if schema.name == entity_name:
                return schema
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemasDictionary":
        return cls(
            name=data["name"],
            version=str(data["version"]),
            schemas=[SchemaDefinition.from_dict(s) for s in data.get("schemas", [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "schemas": [s.to_dict() for s in self.schemas],
        }


# =============================================================================
# Processing results
# =============================================================================


@dataclass
class SchemaValidationError:
    """A field-level problem found while processing one record."""

    error_type: SchemaValidationErrorType
    field_name: str
    index: int
    message: str
    info: Dict[str, Any] = field(default_factory=dict)
    entity_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity_name,
            "errorType": self.error_type.value,
            "fieldName": self.field_name,
            "index": self.index,
            "info": self.info,
            "message": self.message,
        }


@dataclass
class RecordProcessingResult:
    """Output of running one raw record through an entity schema."""

    processed_record: Dict[str, Any]
    validation_errors: List[SchemaValidationError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors


@dataclass
class BatchProcessingResult:
    """Output of running a batch of records through an entity schema."""

    processed_records: List[Dict[str, Any]] = field(default_factory=list)
    validation_errors: List[SchemaValidationError] = field(default_factory=list)


# =============================================================================
# Diffs and change analysis
# =============================================================================


@dataclass
class FieldDiff:
    """Difference for one ``entity.field`` path between two versions.

    ``diff`` is a nested mapping whose leaves are ``{"type": created|updated|
    deleted, "data": value}``. A leaf at the top level means the whole field
    was added or removed.
    """

    before: Optional[Dict[str, Any]]
    after: Optional[Dict[str, Any]]
    diff: Dict[str, Any]


SchemasDictionaryDiffs = Dict[str, FieldDiff]


@dataclass
class FieldChange:
    field: str
    definition: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "definition": self.definition}


@dataclass
class RestrictionChanges:
    """Created/updated/deleted changes for one restriction kind."""

    created: List[FieldChange] = field(default_factory=list)
    updated: List[FieldChange] = field(default_factory=list)
    deleted: List[FieldChange] = field(default_factory=list)

    def add(self, change_type: str, change: FieldChange) -> None:
        getattr(self, change_type).append(change)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": [c.to_dict() for c in self.created],
            "updated": [c.to_dict() for c in self.updated],
            "deleted": [c.to_dict() for c in self.deleted],
        }


@dataclass
class AddedField:
    name: str
    definition: Dict[str, Any]


@dataclass
class ChangeAnalysis:
    """Summary of a dictionary diff, grouped by the kind of change."""

    added_fields: List[AddedField] = field(default_factory=list)
    renamed_fields: List[str] = field(default_factory=list)
    deleted_fields: List[str] = field(default_factory=list)
    is_array_designation_changes: List[str] = field(default_factory=list)
    value_type_changes: List[str] = field(default_factory=list)
    restrictions_changes: Dict[str, RestrictionChanges] = field(
        default_factory=lambda: {kind: RestrictionChanges() for kind in RESTRICTION_KINDS}
    )
    changed_to_core: List[str] = field(default_factory=list)
    changed_from_core: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields": {
                "addedFields": [
                    {"name": f.name, "definition": f.definition} for f in self.added_fields
                ],
                "renamedFields": list(self.renamed_fields),
                "deletedFields": list(self.deleted_fields),
            },
            "isArrayDesignationChanges": list(self.is_array_designation_changes),
            "valueTypeChanges": list(self.value_type_changes),
            "restrictionsChanges": {
                kind: changes.to_dict() for kind, changes in self.restrictions_changes.items()
            },
            "metaChanges": {
                "core": {
                    "changedToCore": list(self.changed_to_core),
                    "changedFromCore": list(self.changed_from_core),
                }
            },
        }

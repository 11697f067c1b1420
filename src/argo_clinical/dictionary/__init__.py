"""Data dictionary model, record processing and change analysis."""

from .entities import (
    ValueType,
    SchemaValidationErrorType,
    FieldDefinition,
    FieldRestrictions,
    RangeRestriction,
    SchemaDefinition,
    SchemasDictionary,
    SchemaValidationError,
    RecordProcessingResult,
    BatchProcessingResult,
    FieldDiff,
    FieldChange,
    ChangeAnalysis,
)
from .processor import process, process_records, stringify_record
from .change_analyzer import analyze_changes, compute_diff
from .client import (
    SchemaProvider,
    InMemorySchemaProvider,
    FileSchemaProvider,
    RestSchemaProvider,
    create_schema_provider,
)
from .manager import DictionaryManager

__all__ = [
    "ValueType",
    "SchemaValidationErrorType",
    "FieldDefinition",
    "FieldRestrictions",
    "RangeRestriction",
    "SchemaDefinition",
    "SchemasDictionary",
    "SchemaValidationError",
    "RecordProcessingResult",
    "BatchProcessingResult",
    "FieldDiff",
    "FieldChange",
    "ChangeAnalysis",
    "process",
    "process_records",
    "stringify_record",
    "analyze_changes",
    "compute_diff",
    "SchemaProvider",
    "InMemorySchemaProvider",
    "FileSchemaProvider",
    "RestSchemaProvider",
    "create_schema_provider",
    "DictionaryManager",
]

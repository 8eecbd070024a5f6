"""
Mapping engine for reconciling a target schema with a source dataset.

This package provides modular components for:
- Per-column assignments (source field, static value, or none)
- Multi-value row filters over the source data
- Table generation and XLSX/CSV serialization
- Persisting the last mapping configuration
"""

from .dataset import SourceDataset, TargetSchema, make_target_schema
from .mapping_store import Assignment, AssignmentKind, MappingStore
from .filter_engine import FilterEngine, FilterRule, cell_to_comparable, value_domain
from .exporter import (
    ExportFormat,
    ExportInProgressError,
    ExportPreconditionError,
    generate_table,
    serialize_table,
)
from .config_cache import ConfigurationCache, schema_signature

__all__ = [
    "SourceDataset",
    "TargetSchema",
    "make_target_schema",
    "Assignment",
    "AssignmentKind",
    "MappingStore",
    "FilterEngine",
    "FilterRule",
    "cell_to_comparable",
    "value_domain",
    "ExportFormat",
    "ExportInProgressError",
    "ExportPreconditionError",
    "generate_table",
    "serialize_table",
    "ConfigurationCache",
    "schema_signature",
]

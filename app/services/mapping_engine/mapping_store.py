"""
Mapping store: per-target-column assignment state.

Every transition returns a new store; rejected requests return the store
unchanged (the same object), so callers detect a no-op with ``is`` or ``==``.
"""

from enum import Enum
from typing import Dict, Mapping, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict

from app.core.logging_config import logger
from app.services.mapping_engine.dataset import TargetSchema


class AssignmentKind(str, Enum):
    unassigned = "unassigned"
    source = "source"
    literal = "literal"


class Assignment(BaseModel):
    """Where a target column takes its values from."""
    model_config = ConfigDict(frozen=True)

    kind: AssignmentKind = AssignmentKind.unassigned
    value: Optional[str] = None  # source header or literal text

    @property
    def source_header(self) -> Optional[str]:
        return self.value if self.kind == AssignmentKind.source else None

    @property
    def literal_value(self) -> Optional[str]:
        return self.value if self.kind == AssignmentKind.literal else None


UNASSIGNED = Assignment()


def from_source(source_header: str) -> Assignment:
    return Assignment(kind=AssignmentKind.source, value=source_header)


def literal(text: str) -> Assignment:
    return Assignment(kind=AssignmentKind.literal, value=text)


class MappingStore(BaseModel):
    """
    Immutable assignment table for one target schema.

    ``columns`` holds the distinct target headers in schema order and
    ``assignments`` is aligned with it. A single Assignment value per column
    means a source mapping and a literal can never be active together.
    """
    model_config = ConfigDict(frozen=True)

    columns: Tuple[str, ...] = ()
    assignments: Tuple[Assignment, ...] = ()

    @classmethod
    def blank(cls, target_schema: TargetSchema) -> "MappingStore":
        columns = tuple(dict.fromkeys(target_schema))
        return cls(columns=columns, assignments=(UNASSIGNED,) * len(columns))

    @classmethod
    def from_snapshot(
        cls,
        target_schema: TargetSchema,
        mapping: Mapping[str, Optional[str]],
        literal_values: Mapping[str, str]
    ) -> "MappingStore":
        """
        Rebuild a store from persisted ``mapping``/``literal_values`` dicts.

        Entries are replayed through the regular transitions so a snapshot
        that breaks an invariant is repaired rather than trusted: literals win
        over source references and the first column keeps a shared source.
        """
        store = cls.blank(target_schema)
        for column in store.columns:
            text = literal_values.get(column)
            source_header = mapping.get(column)
            if isinstance(text, str) and text.strip():
                store = store.assign_literal(column, text)
            elif isinstance(source_header, str) and source_header:
                store = store.assign_from_source(column, source_header)
        return store

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def _index(self, target_col: str) -> Optional[int]:
        try:
            return self.columns.index(target_col)
        except ValueError:
            return None

    def get(self, target_col: str) -> Assignment:
        idx = self._index(target_col)
        return UNASSIGNED if idx is None else self.assignments[idx]

    def source_for(self, target_col: str) -> Optional[str]:
        return self.get(target_col).source_header

    def literal_for(self, target_col: str) -> Optional[str]:
        return self.get(target_col).literal_value

    def is_source_header_in_use(self, source_header: str) -> bool:
        return any(a.source_header == source_header for a in self.assignments)

    def has_any_assignment(self) -> bool:
        return any(a.kind != AssignmentKind.unassigned for a in self.assignments)

    def mapped_source_headers(self) -> Set[str]:
        return {a.source_header for a in self.assignments if a.source_header is not None}

    def mapping(self) -> Dict[str, Optional[str]]:
        """Target column -> source header (None when not mapped from source)."""
        return {col: a.source_header for col, a in zip(self.columns, self.assignments)}

    def literal_values(self) -> Dict[str, str]:
        return {
            col: a.literal_value
            for col, a in zip(self.columns, self.assignments)
            if a.literal_value is not None
        }

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def _with(self, idx: int, assignment: Assignment) -> "MappingStore":
        if self.assignments[idx] == assignment:
            return self
        assignments = self.assignments[:idx] + (assignment,) + self.assignments[idx + 1:]
        return MappingStore(columns=self.columns, assignments=assignments)

    def assign_from_source(self, target_col: str, source_header: str) -> "MappingStore":
        idx = self._index(target_col)
        if idx is None or not source_header:
            logger.debug(f"Rejected source assignment to unknown column '{target_col}'")
            return self
        for other_idx, other in enumerate(self.assignments):
            if other_idx != idx and other.source_header == source_header:
                logger.debug(
                    f"Rejected source assignment '{source_header}' -> '{target_col}': "
                    f"already mapped to '{self.columns[other_idx]}'"
                )
                return self
        return self._with(idx, from_source(source_header))

    def assign_literal(self, target_col: str, text: str) -> "MappingStore":
        trimmed = (text or "").strip()
        if not trimmed:
            return self.clear(target_col)
        idx = self._index(target_col)
        if idx is None:
            logger.debug(f"Rejected literal assignment to unknown column '{target_col}'")
            return self
        return self._with(idx, literal(trimmed))

    def clear(self, target_col: str) -> "MappingStore":
        idx = self._index(target_col)
        if idx is None:
            return self
        return self._with(idx, UNASSIGNED)

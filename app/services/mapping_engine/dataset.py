"""
Value types shared by the mapping engine: the target schema and the source dataset.
"""

from typing import Any, Dict, Iterable, Mapping, Sequence, Tuple

TargetSchema = Tuple[str, ...]
Row = Mapping[str, Any]


class SourceDataset:
    """Container for an ingested source table."""
    
    def __init__(self, headers: Iterable[str], rows: Iterable[Dict[str, Any]]):
        self.headers: Tuple[str, ...] = tuple(headers)  # display order only
        self.rows: Tuple[Dict[str, Any], ...] = tuple(rows)
    
    def __len__(self) -> int:
        return len(self.rows)
    
    @classmethod
    def empty(cls) -> "SourceDataset":
        return cls(headers=(), rows=())


def make_target_schema(headers: Sequence[Any]) -> TargetSchema:
    """Keep the non-blank header cells, in order."""
    return tuple(h for h in headers if isinstance(h, str) and h.strip())

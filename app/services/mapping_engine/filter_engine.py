"""
Filter engine: ordered filter rules over source rows.

A rule is active once it has both a column and at least one selected value.
Active rules combine with AND; the values inside one rule combine with OR.
"""

import math
from datetime import date, datetime, time
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from app.services.mapping_engine.dataset import Row
from app.utils.text_search import collation_key


def cell_to_comparable(value: Any) -> str:
    """
    Render a cell as the string used for filter matching and value domains.

    Absent, None and NaN cells become "". Integral floats drop the fraction
    ("3.0" -> "3"), booleans are lower-case, and dates use ISO-8601 (a
    datetime at midnight renders as its date only).
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, datetime):
        if value.time() == time(0, 0) and value.tzinfo is None:
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def value_domain(rows: Iterable[Row], column: str) -> List[str]:
    """
    Distinct non-empty values of ``column`` across ``rows``, in collation order.

    Args:
        rows: Source rows
        column: Source header; empty yields no values

    Returns:
        Sorted list of stringified cell values
    """
    if not column:
        return []
    values = {cell_to_comparable(row.get(column)) for row in rows}
    values.discard("")
    return sorted(values, key=collation_key)


class FilterRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    column: str = ""
    values: Tuple[str, ...] = ()

    @property
    def is_active(self) -> bool:
        return bool(self.column) and bool(self.values)

    def matches(self, row: Row) -> bool:
        return cell_to_comparable(row.get(self.column)) in self.values


class FilterEngine(BaseModel):
    """Immutable, ordered list of filter rules."""
    model_config = ConfigDict(frozen=True)

    rules: Tuple[FilterRule, ...] = ()
    next_id: int = 1

    def get_rule(self, rule_id: int) -> Optional[FilterRule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def add_rule(self) -> Tuple["FilterEngine", int]:
        rule = FilterRule(id=self.next_id)
        engine = FilterEngine(rules=self.rules + (rule,), next_id=self.next_id + 1)
        return engine, rule.id

    def remove_rule(self, rule_id: int) -> "FilterEngine":
        if self.get_rule(rule_id) is None:
            return self
        rules = tuple(r for r in self.rules if r.id != rule_id)
        return FilterEngine(rules=rules, next_id=self.next_id)

    def _replace(self, rule_id: int, **changes) -> "FilterEngine":
        current = self.get_rule(rule_id)
        if current is None:
            return self
        updated = current.model_copy(update=changes)
        rules = tuple(updated if r.id == rule_id else r for r in self.rules)
        return FilterEngine(rules=rules, next_id=self.next_id)

    def set_rule_column(self, rule_id: int, column: str) -> "FilterEngine":
        # Selected values belong to the previous column's domain
        return self._replace(rule_id, column=column or "", values=())

    def set_rule_values(self, rule_id: int, values: Sequence[str]) -> "FilterEngine":
        return self._replace(rule_id, values=tuple(dict.fromkeys(values)))

    def active_rules(self) -> List[FilterRule]:
        return [rule for rule in self.rules if rule.is_active]

    def matches(self, row: Row) -> bool:
        return all(rule.matches(row) for rule in self.active_rules())

    def select_rows(self, rows: Sequence[Row]) -> Sequence[Row]:
        """Rows passing every active rule; the input itself when none is active."""
        active = self.active_rules()
        if not active:
            return rows
        return [row for row in rows if all(rule.matches(row) for rule in active)]

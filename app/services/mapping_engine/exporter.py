"""
Export pipeline: materializes the mapped table and serializes it to XLSX or CSV.
"""

import io
from enum import Enum
from typing import Any, List, Tuple

import pandas as pd
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from app.core.config import settings
from app.core.logging_config import logger
from app.services.mapping_engine.dataset import SourceDataset, TargetSchema
from app.services.mapping_engine.filter_engine import FilterEngine
from app.services.mapping_engine.mapping_store import MappingStore

Table = List[List[Any]]

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MEDIA_TYPE = "text/csv"


class ExportFormat(str, Enum):
    xlsx = "xlsx"
    csv = "csv"


class ExportPreconditionError(ValueError):
    """Raised when an export is requested with no configured column."""


class ExportInProgressError(RuntimeError):
    """Raised when an export is requested while another one is still running."""


def ensure_exportable(store: MappingStore) -> None:
    if not store.has_any_assignment():
        raise ExportPreconditionError(
            "Assign at least one field or enter a static value before exporting."
        )


def resolve_cell(store: MappingStore, target_col: str, row) -> Any:
    """Literal value, else the mapped source cell, else an empty string."""
    text = store.literal_for(target_col)
    if text is not None:
        return text
    source_header = store.source_for(target_col)
    if source_header:
        value = row.get(source_header)
        if value is not None:
            return value
    return ""


def generate_table(
    target_schema: TargetSchema,
    store: MappingStore,
    filters: FilterEngine,
    dataset: SourceDataset
) -> Table:
    """
    Build the output table for the current mapping.

    Args:
        target_schema: Output headers, in order
        store: Column assignments
        filters: Row filter rules
        dataset: Source rows

    Returns:
        [header_row, *data_rows], every row as long as target_schema

    Raises:
        ExportPreconditionError: If no column has an assignment
    """
    ensure_exportable(store)

    rows = filters.select_rows(dataset.rows)
    table: Table = [list(target_schema)]
    for row in rows:
        table.append([resolve_cell(store, col, row) for col in target_schema])

    logger.info(
        f"Generated export table: {len(rows)} of {len(dataset)} rows, "
        f"{len(target_schema)} columns"
    )
    return table


def export_filename(fmt: ExportFormat) -> str:
    return f"{settings.EXPORT_BASE_FILENAME}.{fmt.value}"


def _xlsx_safe(value: Any) -> Any:
    # Worksheet XML cannot hold most ASCII control characters
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def _force_text_cells(worksheet) -> None:
    """Keep strings such as "=1+1" as text instead of formulas."""
    for row in worksheet.iter_rows():
        for cell in row:
            if isinstance(cell.value, str):
                cell.data_type = "s"


def serialize_table(table: Table, fmt: ExportFormat) -> Tuple[bytes, str, str]:
    """
    Serialize a table (header row included) into file bytes.

    Returns:
        (content, filename, media_type)
    """
    if fmt == ExportFormat.xlsx:
        table = [[_xlsx_safe(value) for value in row] for row in table]

    df = pd.DataFrame(table[1:], columns=range(len(table[0]))) if table else pd.DataFrame()
    header = table[0] if table else []
    buffer = io.BytesIO()

    if fmt == ExportFormat.xlsx:
        # Excel sheet name limit 31 chars
        sheet_name = settings.EXPORT_SHEET_NAME[:31] or "Sheet1"
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name=sheet_name, header=header, index=False)
            _force_text_cells(writer.sheets[sheet_name])
        media_type = XLSX_MEDIA_TYPE
    else:
        text = df.to_csv(header=header, index=False)
        buffer.write(text.encode("utf-8-sig"))
        media_type = CSV_MEDIA_TYPE

    return buffer.getvalue(), export_filename(fmt), media_type

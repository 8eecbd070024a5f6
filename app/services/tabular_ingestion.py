import io
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from fastapi import UploadFile

from app.core.config import settings
from app.core.logging_config import logger
from app.services.mapping_engine.dataset import SourceDataset, TargetSchema, make_target_schema
from app.services.mapping_engine.filter_engine import cell_to_comparable


class MalformedFileError(ValueError):
    """Uploaded file is empty, unreadable, or has no header row."""


class UploadTooLargeError(ValueError):
    """Uploaded file exceeds MAX_UPLOAD_BYTES."""


class TabularIngestionService:
    """Service for turning uploaded CSV/Excel files into headers and rows"""

    SUPPORTED_EXTENSIONS = ('.csv', '.xlsx', '.xls')

    async def read_upload(self, file: UploadFile) -> Tuple[bytes, str]:
        """
        Read an uploaded file fully into memory

        Returns:
            (content, lower-cased filename)
        """
        filename = (file.filename or "").lower()
        if not filename:
            raise ValueError("No filename provided")
        if not filename.endswith(self.SUPPORTED_EXTENSIONS):
            raise ValueError(f"Unsupported file format: {file.filename}")

        content = await file.read()
        if len(content) > settings.MAX_UPLOAD_BYTES:
            raise UploadTooLargeError(
                f"File '{file.filename}' exceeds the {settings.MAX_UPLOAD_BYTES} byte upload limit"
            )
        return content, filename

    def read_grid(self, content: bytes, filename: str) -> pd.DataFrame:
        """
        Parse the first sheet into a header-less grid

        CSV cells are read as text; workbook cells keep their types
        (numbers, dates). Empty cells are NaN or "".
        """
        if not filename.endswith(self.SUPPORTED_EXTENSIONS):
            raise ValueError(f"Unsupported file format: {filename}")

        try:
            if filename.endswith('.csv'):
                df = pd.read_csv(
                    io.BytesIO(content),
                    header=None,
                    dtype=str,
                    keep_default_na=False,
                    skip_blank_lines=True,
                    encoding="utf-8-sig",
                )
            else:
                df = pd.read_excel(io.BytesIO(content), sheet_name=0, header=None)
        except pd.errors.EmptyDataError:
            raise MalformedFileError("The file is empty or has an invalid format.")
        except Exception as e:
            logger.error(f"Error parsing file '{filename}': {str(e)}")
            raise MalformedFileError(f"Failed to parse file: {str(e)}")

        logger.info(f"Parsed file '{filename}': {len(df)} rows, {len(df.columns)} columns")
        return df

    def parse_target_schema(self, content: bytes, filename: str) -> TargetSchema:
        """
        Extract the ordered target headers from the first row

        Raises:
            MalformedFileError: If the file is empty or its first row has no headers
        """
        df = self.read_grid(content, filename)
        if df.empty:
            raise MalformedFileError("The target file is empty or has an invalid format.")

        headers = make_target_schema(_header_cells(df.iloc[0].tolist()))
        if not headers:
            raise MalformedFileError("The target file is empty or has an invalid format.")

        logger.info(f"Target schema loaded: {len(headers)} columns")
        return headers

    def parse_source_dataset(self, content: bytes, filename: str) -> SourceDataset:
        """
        Build the source dataset: header row plus one record per data row

        Blank header cells drop their column; repeated headers get a numeric
        suffix ("Name", "Name_1"). Empty cells are left out of the records and
        fully empty rows are skipped.

        Raises:
            MalformedFileError: If the file has no header row
        """
        df = self.read_grid(content, filename)
        if df.empty:
            raise MalformedFileError("The source file is empty or has an invalid format.")

        header_cells = _header_cells(df.iloc[0].tolist())
        columns = _unique_headers(header_cells)
        if not any(columns):
            raise MalformedFileError("The source file has no header row.")

        rows: List[Dict[str, Any]] = []
        for values in df.iloc[1:].itertuples(index=False, name=None):
            record = {}
            for header, value in zip(columns, values):
                if not header:
                    continue
                cell = _normalize_cell(value)
                if cell is not None:
                    record[header] = cell
            if record:
                rows.append(record)

        headers = [h for h in columns if h]
        logger.info(f"Source dataset loaded: {len(headers)} columns, {len(rows)} rows")
        return SourceDataset(headers=headers, rows=rows)


def _normalize_cell(value: Any) -> Optional[Any]:
    """Convert a pandas cell into a plain Python value; None for empty cells."""
    if value is None:
        return None
    if isinstance(value, str):
        return value if value != "" else None
    if pd.isna(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    if isinstance(value, np.generic):
        return value.item()
    return value


def _header_cells(values: List[Any]) -> List[str]:
    headers = []
    for value in values:
        cell = _normalize_cell(value)
        headers.append("" if cell is None else cell_to_comparable(cell))
    return headers


def _unique_headers(headers: List[str]) -> List[str]:
    seen: Dict[str, int] = {}
    result = []
    for header in headers:
        if not header.strip():
            result.append("")
            continue
        count = seen.get(header, 0)
        seen[header] = count + 1
        result.append(header if count == 0 else f"{header}_{count}")
    return result


tabular_ingestion_service = TabularIngestionService()

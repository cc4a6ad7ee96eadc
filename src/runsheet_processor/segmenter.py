"""
Runsheet Row Segmenter

Splits runsheet text into ordered, cleaned rows. Spreadsheet runsheets are
first flattened to text, one ` | `-joined line per sheet row, so both
sources go through the same cleaning.
"""

import logging
import re
from typing import Optional

from openpyxl import load_workbook

from .models import DocumentRow

logger = logging.getLogger(__name__)

# Marker used for line breaks inside a single spreadsheet cell
NEWLINE_MARKER = "||NEWLINE||"
FIELD_SEPARATOR = " | "


def clean_row_content(content: str) -> str:
    """
    Normalize one runsheet line for display and analysis.

    - Embedded newline markers and carriage returns are removed
    - Runs of whitespace collapse to one space
    - Pipe-delimited lines become a bulleted multi-field block
    """
    cleaned = content.replace(NEWLINE_MARKER, "\n")
    cleaned = cleaned.replace("\r", "")
    cleaned = re.sub(r'\s+', ' ', cleaned)

    if FIELD_SEPARATOR in cleaned:
        parts = [part.strip() for part in cleaned.split(FIELD_SEPARATOR)]
        parts = [part for part in parts if part]
        if len(parts) > 1:
            return "\n• ".join(parts)

    return cleaned.strip()


def parse_document_into_rows(document_text: str) -> list[DocumentRow]:
    """
    Split runsheet text into DocumentRows numbered from 1.

    Blank lines are dropped. The same text always yields the same rows.
    """
    lines = [line for line in document_text.split("\n") if line.strip()]
    rows = [
        DocumentRow(
            id=f"row-{index}",
            row_number=index + 1,
            content=clean_row_content(line.strip()),
        )
        for index, line in enumerate(lines)
    ]
    logger.debug(f"Segmented runsheet into {len(rows)} rows")
    return rows


def _format_cell(value) -> str:
    if value is None:
        return ""
    if hasattr(value, "strftime"):
        return value.strftime("%m/%d/%Y")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip()
    return text.replace("\r\n", NEWLINE_MARKER).replace("\n", NEWLINE_MARKER)


def read_runsheet_workbook(xlsx_path: str, sheet: Optional[str] = None,
                           skip_header: bool = True) -> str:
    """
    Flatten an .xlsx runsheet into text suitable for parse_document_into_rows.

    Args:
        xlsx_path: Path to the workbook
        sheet: Worksheet name (defaults to the active sheet)
        skip_header: Drop the first row (column titles)

    Returns:
        One line per non-empty sheet row, cells joined with " | "
    """
    wb = load_workbook(filename=xlsx_path, read_only=True, data_only=True)
    try:
        ws = wb[sheet] if sheet else wb.active
        logger.info(f"Reading runsheet sheet: {ws.title}")

        lines = []
        min_row = 2 if skip_header else 1
        for row in ws.iter_rows(min_row=min_row, values_only=True):
            cells = [_format_cell(value) for value in row]
            cells = [cell for cell in cells if cell]
            if not cells:
                continue
            lines.append(FIELD_SEPARATOR.join(cells))
    finally:
        wb.close()

    logger.info(f"Read {len(lines)} runsheet rows from {xlsx_path}")
    return "\n".join(lines)

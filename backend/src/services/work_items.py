"""Input table reader: unique style keys plus every original row grouped by style."""

import csv
import logging
import re
from pathlib import Path

from src.services.fields import canonical_field_names
from src.services.types import WorkItemRow, WorkItems

logger = logging.getLogger(__name__)

STYLE_SEPARATOR = "-"
_HEADER_RE = re.compile(r"^\s*(style|item)", re.IGNORECASE)


class InputReadError(Exception):
    """Raised when the input table cannot be read at all."""


def parse_csv_line(line: str) -> list[str]:
    """Split one delimited line, honouring quotes and keeping empty cells.

    Doubled quotes inside a quoted field are unescaped. A malformed line (for
    example an unterminated quote) falls back to a plain comma split so one bad
    row does not abort the whole job.
    """
    try:
        rows = list(csv.reader([line], skipinitialspace=True, strict=True))
    except csv.Error:
        logger.warning("malformed CSV line, splitting on commas: %.80s", line)
        return [cell.strip().strip('"') for cell in line.split(",")]
    cells = rows[0] if rows else [""]
    return [cell.strip() for cell in cells]


def style_key(item_id: str) -> str:
    """Stable style key: the part of the item id before the first separator."""
    return item_id.split(STYLE_SEPARATOR, 1)[0].strip()


def _is_header(cells: list[str]) -> bool:
    return bool(cells) and bool(_HEADER_RE.match(cells[0]))


def _column_names(header: list[str] | None, width: int) -> list[str]:
    """Header names for a row of *width* cells; headerless input maps by position."""
    names = list(header) if header is not None else canonical_field_names()
    if len(names) < width:
        names += [f"COLUMN {i + 1}" for i in range(len(names), width)]
    return names


def read_work_items(csv_path: Path) -> WorkItems:
    """Read *csv_path* into unique styles and rows grouped by style.

    Raises InputReadError only when the file itself cannot be read.
    """
    try:
        content = csv_path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise InputReadError(f"Cannot read input file {csv_path}: {exc}") from exc

    unique_styles: list[str] = []
    style_to_rows: dict[str, list[WorkItemRow]] = {}
    header: list[str] | None = None

    for i, raw_line in enumerate(content.splitlines()):
        line = raw_line.strip()
        if not line:
            continue
        cells = parse_csv_line(line)
        if i == 0 and _is_header(cells):
            header = cells
            continue

        item_id = cells[0] if cells else ""
        style_no = style_key(item_id)
        if not style_no:
            continue

        names = _column_names(header, len(cells))
        fields = {name: cells[idx] if idx < len(cells) else "" for idx, name in enumerate(names)}
        row = WorkItemRow(
            item_id=item_id,
            style_no=style_no,
            original_row=cells,
            fields=fields,
            line_index=i,
        )
        if style_no not in style_to_rows:
            style_to_rows[style_no] = []
            unique_styles.append(style_no)
        style_to_rows[style_no].append(row)

    logger.info(
        "read %d row(s) for %d unique style(s) from %s",
        sum(len(rows) for rows in style_to_rows.values()),
        len(unique_styles),
        csv_path.name,
    )
    return WorkItems(unique_styles=unique_styles, style_to_rows=style_to_rows, header=header)

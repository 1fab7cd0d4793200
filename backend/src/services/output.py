"""Merge extraction results back onto every original input row."""

import logging
from collections.abc import Callable
from typing import Any

from src.schemas.job import ExportTable
from src.services.fields import (
    ARTIFACT_LINK_FIELD,
    ITEM_ID_FIELD,
    NOT_APPLICABLE_MARKERS,
    canonical_field_names,
    tech_pack_field_names,
)
from src.services.types import WorkItemRow

logger = logging.getLogger(__name__)

LOGIC_HEADERS = ["STYLE PREFIX", "FIELD", "VALUE", "LOGIC", "NEEDS REVIEW"]


def _field_value(field: Any) -> str:
    if isinstance(field, dict):
        field = field.get("value")
    if field is None:
        return ""
    value = str(field).strip()
    if value.lower() in NOT_APPLICABLE_MARKERS:
        return ""
    return value


def _field_rationale(field: Any) -> str:
    if isinstance(field, dict):
        return str(field.get("rationale") or field.get("logic") or "")
    return ""


def _field_needs_review(field: Any) -> bool:
    return isinstance(field, dict) and bool(field.get("needs_review"))


def output_headers(input_header: list[str] | None) -> list[str]:
    """Canonical fields first, then any extra input columns, then the artifact link."""
    headers = canonical_field_names()
    for name in input_header or []:
        if name and name not in headers and name != ARTIFACT_LINK_FIELD:
            headers.append(name)
    headers.append(ARTIFACT_LINK_FIELD)
    return headers


def assemble_output(
    extractions: dict[str, dict[str, Any]],
    unique_styles: list[str],
    style_to_rows: dict[str, list[WorkItemRow]],
    input_header: list[str] | None,
    artifact_url: Callable[[str], str],
) -> ExportTable:
    """Build the export table and the per-field audit table.

    Values already present in the input are never overwritten; extracted
    values only fill empty cells. Styles without an extraction keep their
    input values and get no artifact link.
    """
    extracted_fields = tech_pack_field_names()
    headers = output_headers(input_header)

    rows: list[dict[str, str]] = []
    logic_rows: list[dict[str, str]] = []

    for style_no in unique_styles:
        extracted = extractions.get(style_no)
        bundle = extracted or {}
        link = artifact_url(style_no) if extracted is not None else ""

        for field_name in extracted_fields:
            field = bundle.get(field_name)
            logic_rows.append(
                {
                    "STYLE PREFIX": style_no,
                    "FIELD": field_name,
                    "VALUE": _field_value(field),
                    "LOGIC": _field_rationale(field),
                    "NEEDS REVIEW": "YES" if _field_needs_review(field) else "NO",
                }
            )

        for original in style_to_rows.get(style_no, []):
            row: dict[str, str] = {}
            for name in headers:
                if name == ARTIFACT_LINK_FIELD:
                    continue
                existing = original["fields"].get(name, "")
                if name == ITEM_ID_FIELD and not existing:
                    existing = original["item_id"]
                if not existing.strip() and name in extracted_fields:
                    existing = _field_value(bundle.get(name))
                row[name] = existing
            row[ARTIFACT_LINK_FIELD] = link
            rows.append(row)

    logger.info(
        "prepared %d output row(s) and %d audit row(s) from %d style(s)",
        len(rows),
        len(logic_rows),
        len(unique_styles),
    )
    return ExportTable(
        headers=headers,
        rows=rows,
        logic_headers=LOGIC_HEADERS,
        logic_rows=logic_rows,
    )

"""Shared typed return types for backend services."""

from typing import NotRequired, TypedDict


class WorkItemRow(TypedDict):
    item_id: str
    style_no: str
    original_row: list[str]
    # Column name -> value view over original_row.
    fields: dict[str, str]
    line_index: int


class DownloadResult(TypedDict):
    style_no: str
    success: bool
    file_path: NotRequired[str]
    skipped: NotRequired[bool]
    error: NotRequired[str]


class ExtractionResult(TypedDict):
    style_no: str
    success: bool
    # field_name -> {value, rationale, needs_review}
    data: NotRequired[dict[str, dict[str, object]]]
    error: NotRequired[str]


class WorkItems(TypedDict):
    # Unique style keys in first-seen order.
    unique_styles: list[str]
    style_to_rows: dict[str, list[WorkItemRow]]
    # None when the input had no header row.
    header: list[str] | None

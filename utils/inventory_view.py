"""
Client-side filtering and paging over the loaded inventory buffer.

Everything here is a pure derivation: nothing mutates the buffer, and a view
is recomputed whenever the buffer or the selection changes.
"""

import math
from typing import List, Optional

import pandas as pd
from pydantic import BaseModel, Field

from constants.schemas import ALL, InventoryRecord

DISPLAY_COLUMNS = [
    "state",
    "district",
    "department_type",
    "department_name",
    "item_code",
    "item_name",
    "quantity",
    "created_at",
    "id",
]


class ViewPage(BaseModel):
    items: List[InventoryRecord] = Field(default_factory=list)
    page: int = 1
    page_count: int = 0
    total: int = 0


def _selected(value: Optional[str]) -> bool:
    return bool(value) and value != ALL


def filter_records(
    records: List[InventoryRecord],
    state: Optional[str] = None,
    district: Optional[str] = None,
    department_type: Optional[str] = None,
) -> List[InventoryRecord]:
    """Apply the selector values as equality filters; "all" means no filter"""
    filtered = records
    if _selected(state):
        filtered = [record for record in filtered if record.state == state]
    if _selected(district):
        filtered = [record for record in filtered if record.district == district]
    if _selected(department_type):
        filtered = [record for record in filtered if record.department_type == department_type]
    return list(filtered)


def paginate(records: List[InventoryRecord], page: int = 1, per_page: int = 50) -> ViewPage:
    """
    Slice one 1-based page out of ``records``.

    Pages past the end are clamped to the last page; an empty list yields an
    empty first page.
    """
    if per_page <= 0:
        raise ValueError(f"per_page must be > 0, got {per_page}")

    total = len(records)
    page_count = math.ceil(total / per_page)
    page = min(max(page, 1), max(page_count, 1))
    start = (page - 1) * per_page
    return ViewPage(items=records[start:start + per_page], page=page, page_count=page_count, total=total)


def records_to_dataframe(records: List[InventoryRecord]) -> pd.DataFrame:
    """Convert records to a DataFrame with the display columns first"""
    if not records:
        return pd.DataFrame(columns=DISPLAY_COLUMNS)

    df = pd.DataFrame([record.model_dump() for record in records])
    extra_columns = [column for column in df.columns if column not in DISPLAY_COLUMNS]
    return df[DISPLAY_COLUMNS + extra_columns]


def quantity_by_state(records: List[InventoryRecord]) -> pd.DataFrame:
    """Total quantity and line count per state, largest total first. Null quantities count as zero."""
    if not records:
        return pd.DataFrame(columns=["state", "total_quantity", "line_items"])

    df = records_to_dataframe(records)
    df["quantity"] = pd.to_numeric(df["quantity"], errors="coerce").fillna(0).astype(int)
    summary = (
        df.groupby("state")
        .agg(total_quantity=("quantity", "sum"), line_items=("id", "count"))
        .reset_index()
        .sort_values(["total_quantity", "state"], ascending=[False, True])
        .reset_index(drop=True)
    )
    return summary

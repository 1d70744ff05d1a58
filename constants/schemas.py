import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator, model_validator

# Filter value meaning "no restriction" in every selector.
ALL = "all"

FILTER_FIELDS = (
    "state",
    "district",
    "department_type",
    "department_name",
    "item_code",
    "item_name",
)

SORT_ORDER = ("state", "district", "department_type")


def now():
    return datetime.now(ZoneInfo("UTC"))


class Facet(str, Enum):
    STATE = "state"
    DISTRICT = "district"
    DEPARTMENT_TYPE = "department_type"


class RunStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    ABORTED = "aborted"


class InventoryRecord(BaseModel):
    """One relief-supply line item as stored in the ``inventory`` table"""

    id: str = Field(default_factory=lambda: f"temp-{uuid.uuid4()}")
    state: str = ""
    district: str = ""
    department_type: str = ""
    department_name: str = ""
    item_code: Optional[int] = None
    item_name: str = ""
    quantity: Optional[int] = None
    created_at: datetime = Field(default_factory=now)

    class Config:
        extra = "allow"

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        # The table allows nulls in text columns; treat them as missing so
        # defaults apply.
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None or key == "quantity"}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)


class InventoryFilters(BaseModel):
    """Equality filters for a sync run. ``"all"`` and empty values are ignored."""

    state: Optional[str] = None
    district: Optional[str] = None
    department_type: Optional[str] = None
    department_name: Optional[str] = None
    item_code: Optional[int] = None
    item_name: Optional[str] = None

    def active(self) -> Dict[str, Any]:
        """Return only the filters that restrict the result set"""
        active = {}
        for field in FILTER_FIELDS:
            value = getattr(self, field)
            if value is None:
                continue
            if isinstance(value, str) and (not value.strip() or value == ALL):
                continue
            active[field] = value
        return active


class PageRequest(BaseModel):
    offset: int = Field(ge=0)
    limit: int = Field(gt=0)
    filters: Dict[str, Any] = Field(default_factory=dict)
    order: List[str] = Field(default_factory=lambda: list(SORT_ORDER))

    @property
    def range_end(self) -> int:
        """Inclusive index of the last row this request may return"""
        return self.offset + self.limit - 1


class Page(BaseModel):
    """One fetch result"""

    offset: int
    limit: int
    records: List[InventoryRecord] = Field(default_factory=list)
    has_more: bool = False
    total_count: Optional[int] = None

    @model_validator(mode="after")
    def check_bounds(self) -> "Page":
        if len(self.records) > self.limit:
            raise ValueError(f"page holds {len(self.records)} records but the limit is {self.limit}")
        if len(self.records) < self.limit and self.has_more:
            raise ValueError("a short page cannot signal more data")
        return self


class SyncProgress(BaseModel):
    """Immutable snapshot of a sync run, published after every page resolves"""

    accumulated: int = 0
    estimated_total: int = 0
    percentage: int = Field(default=0, ge=0, le=100)
    status: RunStatus = RunStatus.IN_PROGRESS
    pages_fetched: int = 0
    pages_failed: int = 0

    class Config:
        frozen = True

    @property
    def is_done(self) -> bool:
        return self.status != RunStatus.IN_PROGRESS


class FacetSet(BaseModel):
    states: List[str] = Field(default_factory=list)
    districts: List[str] = Field(default_factory=list)
    department_types: List[str] = Field(default_factory=list)

    def as_filter_options(self) -> Dict[str, List[str]]:
        """Shape used by the ``filterOptions`` field of the records API"""
        return {
            "states": self.states,
            "districts": self.districts,
            "departmentTypes": self.department_types,
        }

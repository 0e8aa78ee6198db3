"""Pydantic schemas for report parameters, view state and API payloads."""

from datetime import date
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class TabType(str, Enum):
    """Object level shown in a report tab."""

    CAMPAIGNS = "campaigns"
    ADSETS = "adsets"
    ADS = "ads"
    CREATIVES = "creatives"

    @property
    def insight_level(self) -> str:
        """Level requested from the insights endpoint; creatives report against their ad."""
        return {
            TabType.CAMPAIGNS: "campaign",
            TabType.ADSETS: "adset",
            TabType.ADS: "ad",
            TabType.CREATIVES: "ad",
        }[self]


ALL_TABS: List[TabType] = [TabType.CAMPAIGNS, TabType.ADSETS, TabType.ADS, TabType.CREATIVES]


class ParentDisplay(str, Enum):
    ACCOUNT = "account"
    CAMPAIGN = "campaign"
    ADSET = "adset"
    AD = "ad"
    NONE = "none"


FilterMode = Literal["selection", "all"]
TextOperator = Literal["contains", "not-contains", "equal"]


# =============================================================================
# FILTER CONDITIONS
# =============================================================================

class TextCondition(BaseModel):
    """Text match on item names (or on the date string for the date column)."""

    type: Literal["text"] = "text"
    operator: TextOperator
    values: List[str] = Field(min_length=1, description="Any of these values may match")

    @model_validator(mode="before")
    @classmethod
    def _single_value(cls, data: Any) -> Any:
        if isinstance(data, dict) and "values" not in data and "value" in data:
            data = {**data, "values": [data["value"]]}
        return data


class NumericCondition(BaseModel):
    """Numeric comparison against a metric column."""

    type: Literal["numeric"] = "numeric"
    operator: Literal["greater", "less", "equal", "not-equal", "between"]
    value: float
    value_to: Optional[float] = Field(default=None, description="Upper bound for 'between'")

    @model_validator(mode="after")
    def _between_needs_upper_bound(self) -> "NumericCondition":
        if self.operator == "between" and self.value_to is None:
            raise ValueError("'between' requires value_to")
        return self


class StatusCondition(BaseModel):
    type: Literal["status"] = "status"
    values: List[str]


class DateCondition(BaseModel):
    type: Literal["date"] = "date"
    operator: Literal["before", "after", "on"]
    value: date


FilterCondition = Annotated[
    Union[TextCondition, NumericCondition, StatusCondition, DateCondition],
    Field(discriminator="type"),
]


class ParentFilter(BaseModel):
    """Filter on the parent path string of each item."""

    operator: TextOperator
    values: List[str] = Field(default_factory=list)


class SortConfig(BaseModel):
    direction: Literal["asc", "desc"]


# =============================================================================
# REPORT PARAMETERS
# =============================================================================

class ReportParams(BaseModel):
    """Everything the cache needs to decide what data is valid.

    Load dates bound what is fetched; display dates only re-slice it.
    """

    workspace_id: Optional[str] = None
    report_id: Optional[str] = None
    load_date_from: date
    load_date_to: date
    display_date_from: Optional[date] = Field(default=None, description="Defaults to load_date_from")
    display_date_to: Optional[date] = Field(default=None, description="Defaults to load_date_to")
    period_b_from: Optional[date] = None
    period_b_to: Optional[date] = None
    compare_enabled: bool = False
    attribution: str = ""
    account_ids: List[str] = Field(default_factory=list)
    selections_by_tab: Dict[TabType, List[str]] = Field(default_factory=dict)
    account_name_map: Dict[str, str] = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "example": {
                "workspace_id": "ws-1",
                "report_id": "rep-1",
                "load_date_from": "2025-01-01",
                "load_date_to": "2025-01-31",
                "display_date_from": "2025-01-15",
                "display_date_to": "2025-01-31",
                "attribution": "7d_click_1d_view",
                "account_ids": ["act_1"],
                "selections_by_tab": {"campaigns": ["c1", "c2"]},
            }
        }
    }

    @property
    def display_range(self) -> tuple:
        return (
            self.display_date_from or self.load_date_from,
            self.display_date_to or self.load_date_to,
        )

    def selections_for(self, tab: TabType) -> List[str]:
        return list(self.selections_by_tab.get(tab) or [])


# =============================================================================
# DATA VIEW
# =============================================================================

class DataViewRequest(BaseModel):
    """Filter/sort/selection state for one table view."""

    column_conditions: Dict[str, Optional[FilterCondition]] = Field(default_factory=dict)
    column_sorts: Dict[str, Optional[SortConfig]] = Field(default_factory=dict)
    checked_items: List[str] = Field(default_factory=list, description="Item keys (date-itemId)")
    checked_dates: List[str] = Field(default_factory=list, description="Row ids (dd.mm.yyyy)")
    parent_filter: Optional[ParentFilter] = None
    parent_display: ParentDisplay = ParentDisplay.NONE
    global_search: str = ""
    filter_mode: FilterMode = "all"
    compare: bool = Field(default=False, description="Use Period B as the previous period")


class TableItemOut(BaseModel):
    id: str
    key: str
    name: str
    subtitle: str = ""
    status: str
    thumbnail: str = ""
    metrics: Dict[str, float]


class TableRowOut(BaseModel):
    id: str
    date: str
    items: List[TableItemOut]
    metrics: Dict[str, float] = Field(default_factory=dict)


class AggregatedMetricOut(BaseModel):
    total: float
    change: Optional[float] = None
    change_percent: Optional[float] = None


class DataViewResponse(BaseModel):
    filtered_table_data: List[TableRowOut]
    filtered_previous_period_data: Optional[List[TableRowOut]] = None
    visible_items: List[TableItemOut]
    aggregated_metrics: Dict[str, AggregatedMetricOut]
    filtered_item_ids: List[str]
    total_rows: int
    selected_rows: int


# =============================================================================
# CHARTS
# =============================================================================

class ChartDataRequest(DataViewRequest):
    """A data view plus the metrics to chart."""

    metric_ids: List[str] = Field(
        min_length=1,
        description="Metrics to chart; generic ids resolve to the dynamic variant present in the data",
        examples=[["spend", "results"]],
    )
    metric_labels: Dict[str, str] = Field(default_factory=dict, description="Display names for pie slices")


class MetricChangeOut(BaseModel):
    metric_id: str
    current: float
    previous: float
    percent_change: float
    polarity: Literal["up", "down", "neutral"]
    is_good: Optional[bool] = Field(None, description="None when the change is flat or the metric is neutral")


class ConversionVariantOut(BaseModel):
    metric_id: str
    value: float
    change_percent: Optional[float] = None


class ChartDataResponse(BaseModel):
    metric_ids: List[str] = Field(description="Concrete metric ids, in request order")
    time_series: List[Dict[str, Any]]
    pie: List[Dict[str, Any]]
    changes: List[MetricChangeOut]
    conversion_variants: List[ConversionVariantOut]


class ItemMetadataOut(BaseModel):
    name: Optional[str] = None
    status: str
    subtitle: Optional[str] = None
    thumbnail: Optional[str] = None


class HierarchyEntryOut(BaseModel):
    account: Optional[str] = None
    account_name: Optional[str] = None
    campaign: Optional[str] = None
    campaign_name: Optional[str] = None
    adset: Optional[str] = None
    adset_name: Optional[str] = None
    ad: Optional[str] = None
    ad_name: Optional[str] = None


class TabDataResponse(BaseModel):
    metrics_data: Dict[str, Dict[str, Dict[str, float]]]
    items_metadata: Dict[str, ItemMetadataOut]
    hierarchy_data: Dict[str, HierarchyEntryOut]
    available_metric_keys: List[str]
    table_rows: List[TableRowOut]
    loaded_at: float


class CacheStateResponse(BaseModel):
    is_loading: bool
    is_loading_period_b: bool
    loading_tabs: List[TabType]
    error: Optional[str] = None
    signature: Optional[Dict[str, Any]] = None
    period_b_signature: Optional[List[str]] = None
    cached_signatures: int = 0


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status", examples=["ok"])

"""
Report data router
------------------
Purpose:
- Expose report sessions over HTTP: evaluate parameters, read tab data,
  build filtered views and chart data, force a refresh, inspect loading state.
Design choices:
- A session wraps one ReportCacheService, so windows loaded earlier are
  restored without network calls.
- Evaluate and refresh answer once Period A is committed. A Period B prefetch
  keeps running on the session; clients poll /state or pass
  ``wait_for_period_b=true``.
- Views are computed server-side with the same aggregation rules as totals.
"""

from dataclasses import asdict
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from adreport.schemas import (
    CacheStateResponse,
    ChartDataRequest,
    ChartDataResponse,
    DataViewRequest,
    DataViewResponse,
    ReportParams,
    TabDataResponse,
    TabType,
)
from adreport.services.chart_data import build_chart_data
from adreport.services.data_view import DataView, build_data_view, rows_from_table
from adreport.services.hierarchy import build_parent_info_getter
from adreport.services.report_cache_service import ReportCacheService
from adreport.services.tab_loader import TabData
from adreport.state import SessionRegistry, get_session_registry

router = APIRouter(prefix="/reports", tags=["reports"])

WAIT_FOR_PERIOD_B = Query(False, description="Also wait for the comparison period before answering")


def _require_session(registry: SessionRegistry, session_id: str) -> ReportCacheService:
    service = registry.get(session_id)
    if service is None:
        raise HTTPException(status_code=404, detail="Report session not found")
    return service


def _require_tab(service: ReportCacheService, tab: TabType) -> TabData:
    data = service.get_tab_data(tab)
    if data is None:
        raise HTTPException(status_code=404, detail=f"No data loaded for tab '{tab.value}'")
    return data


async def _settle(service: ReportCacheService, wait_for_period_b: bool) -> None:
    if wait_for_period_b:
        await service.wait_idle()
    else:
        await service.wait_primary()


def _build_view(service: ReportCacheService, tab: TabType, data: TabData, request: DataViewRequest) -> DataView:
    previous_rows = None
    if request.compare:
        period_b: Optional[TabData] = service.get_tab_data(tab, use_period_b=True)
        if period_b is not None:
            previous_rows = rows_from_table(period_b.table_rows)

    return build_data_view(
        rows_from_table(data.table_rows),
        column_conditions=request.column_conditions,
        column_sorts=request.column_sorts,
        checked_items=request.checked_items,
        checked_dates=request.checked_dates,
        parent_filter=request.parent_filter,
        parent_display=request.parent_display,
        global_search=request.global_search,
        get_parent_info=build_parent_info_getter(data.hierarchy_data, request.parent_display),
        filter_mode=request.filter_mode,
        previous_period_data=previous_rows,
    )


@router.post("/sessions/{session_id}/evaluate", response_model=CacheStateResponse)
async def evaluate(
    session_id: str,
    params: ReportParams,
    wait_for_period_b: bool = WAIT_FOR_PERIOD_B,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Apply report parameters; loads, restores or re-slices as needed."""
    service = registry.get_or_create(session_id)
    service.evaluate(params)
    await _settle(service, wait_for_period_b)
    return CacheStateResponse(**service.state())


@router.get("/sessions/{session_id}/state", response_model=CacheStateResponse)
async def get_state(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    service = _require_session(registry, session_id)
    return CacheStateResponse(**service.state())


@router.post("/sessions/{session_id}/refresh", response_model=CacheStateResponse)
async def refresh(
    session_id: str,
    wait_for_period_b: bool = WAIT_FOR_PERIOD_B,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Drop the current signature and reload with the last parameters."""
    service = _require_session(registry, session_id)
    service.refresh_cache()
    if service.params is not None:
        service.evaluate(service.params)
        await _settle(service, wait_for_period_b)
    return CacheStateResponse(**service.state())


@router.get("/sessions/{session_id}/tabs/{tab}", response_model=TabDataResponse)
async def get_tab(
    session_id: str,
    tab: TabType,
    period: Literal["a", "b"] = Query("a", description="'b' returns the comparison period"),
    registry: SessionRegistry = Depends(get_session_registry),
):
    service = _require_session(registry, session_id)
    data = service.get_tab_data(tab, use_period_b=period == "b")
    if data is None:
        raise HTTPException(status_code=404, detail=f"No data loaded for tab '{tab.value}'")
    return TabDataResponse(**asdict(data))


@router.post("/sessions/{session_id}/tabs/{tab}/view", response_model=DataViewResponse)
async def build_view(
    session_id: str,
    tab: TabType,
    request: DataViewRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Filtered, sorted and aggregated view of one tab."""
    service = _require_session(registry, session_id)
    data = _require_tab(service, tab)
    view = _build_view(service, tab, data, request)
    return DataViewResponse(**asdict(view))


@router.post("/sessions/{session_id}/tabs/{tab}/chart", response_model=ChartDataResponse)
async def build_chart(
    session_id: str,
    tab: TabType,
    request: ChartDataRequest,
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Time series, pie shares and period changes of a view, with generic metrics resolved."""
    service = _require_session(registry, session_id)
    data = _require_tab(service, tab)
    view = _build_view(service, tab, data, request)
    return ChartDataResponse(**build_chart_data(
        view,
        request.metric_ids,
        data.available_metric_keys,
        data.metrics_data,
        request.metric_labels,
    ))


@router.delete("/sessions/{session_id}", status_code=204)
async def close_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    if not registry.close(session_id):
        raise HTTPException(status_code=404, detail="Report session not found")

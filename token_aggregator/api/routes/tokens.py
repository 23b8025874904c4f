"""
代币数据API路由
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from token_aggregator.core.builder import TokenServices
from token_aggregator.core.logger import get_logger
from token_aggregator.core.timezone_utils import ms_to_datetime
from token_aggregator.models.query import QueryFilter, SortField, SortOrder, TimePeriod

logger = get_logger(__name__)

router = APIRouter()


def get_services(request: Request) -> TokenServices:
    """从应用状态获取已构建的服务（供路由依赖注入）"""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return services


@router.get("/tokens")
async def list_tokens(
    sort_by: SortField = Query(SortField.VOLUME, alias="sortBy"),
    sort_order: SortOrder = Query(SortOrder.DESC, alias="sortOrder"),
    time_period: TimePeriod = Query(TimePeriod.DAY, alias="timePeriod"),
    min_volume: Optional[float] = Query(None, alias="minVolume"),
    min_market_cap: Optional[float] = Query(None, alias="minMarketCap"),
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    services: TokenServices = Depends(get_services),
) -> Dict[str, Any]:
    """
    分页获取代币列表

    数据来自缓存快照，缓存缺失时触发一次聚合刷新。
    """
    snapshot = await services.aggregator.refresh()
    page = services.query_engine.query(
        snapshot,
        QueryFilter(
            sort_field=sort_by,
            sort_order=sort_order,
            time_period=time_period,
            min_volume=min_volume,
            min_market_cap=min_market_cap,
            cursor=cursor,
            limit=limit,
        ),
    )
    return {
        "data": [record.model_dump(mode="json") for record in page.items],
        "pagination": {
            "nextCursor": page.next_cursor,
            "hasMore": page.has_more,
            "total": page.total,
        },
        "generatedAt": ms_to_datetime(snapshot.generated_at).isoformat(),
    }


@router.get("/tokens/{address}")
async def get_token(
    address: str,
    services: TokenServices = Depends(get_services),
) -> Dict[str, Any]:
    """按地址获取单个代币"""
    record = await services.aggregator.get_by_identity(address)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Token {address} not found")
    return {"data": record.model_dump(mode="json")}


@router.get("/search")
async def search_tokens(
    q: str = Query(..., min_length=1),
    services: TokenServices = Depends(get_services),
) -> Dict[str, Any]:
    """在所有数据源中搜索代币"""
    query = q.strip()
    if not query:
        raise HTTPException(status_code=422, detail="Query must not be blank")
    records = await services.aggregator.search(query)
    return {"data": [record.model_dump(mode="json") for record in records]}


@router.post("/cache/invalidate")
async def invalidate_cache(
    key: Optional[str] = Query(None),
    services: TokenServices = Depends(get_services),
) -> Dict[str, Any]:
    """删除缓存键，默认为代币快照"""
    existed = await services.aggregator.invalidate(key)
    return {"success": True, "existed": existed}


@router.get("/health")
async def health_check(services: TokenServices = Depends(get_services)) -> Dict[str, Any]:
    """健康检查端点"""
    rate_limits = services.rate_limiters.get_all_stats() if services.rate_limiters else {}
    return {
        "status": "healthy",
        "services": {
            "api": "running",
            "cache": "redis" if services.cache.is_available() else "memory",
            "detector": "running" if services.detector.running else "stopped",
            "sources": [source.name for source in services.sources],
        },
        "rateLimits": rate_limits,
    }

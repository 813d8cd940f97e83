"""Retailer adapter routes."""

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dropwatch.api.deps import get_adapter, get_database
from dropwatch.db.models import Retailer
from dropwatch.ingest.adapter import BaseRetailerAdapter
from dropwatch.ingest.base import AvailabilityRecord, AvailabilityRequest
from dropwatch.ingest.errors import ErrorType, RetailerError
from dropwatch.ingest.registry import AdapterRegistry
from dropwatch.ingest.store_health import adapter_health

router = APIRouter(prefix="/api/retailers", tags=["retailers"])

_ERROR_STATUS = {
    ErrorType.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorType.RATE_LIMIT: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorType.NETWORK: status.HTTP_504_GATEWAY_TIMEOUT,
}


class AvailabilityRequestBody(BaseModel):
    product_id: int
    sku: Optional[str] = None
    upc: Optional[str] = None
    product_url: Optional[str] = None
    zip_code: Optional[str] = None
    radius_miles: int = 25
    query: Optional[str] = None


def _record_to_dict(record: AvailabilityRecord) -> dict:
    data = asdict(record)
    data["availability_status"] = record.availability_status.value
    for name in ("price", "original_price"):
        value = data[name]
        data[name] = float(value) if value is not None else None
    return data


def _to_http_error(error: RetailerError) -> HTTPException:
    return HTTPException(
        status_code=_ERROR_STATUS.get(error.error_type, status.HTTP_502_BAD_GATEWAY),
        detail={
            "message": error.message,
            "error_type": error.error_type.value,
            "retryable": error.retryable,
        },
    )


@router.get("")
async def list_retailers(db: AsyncSession = Depends(get_database)):
    """Registered adapters, with the matching retailer row where one exists."""
    result = await db.execute(select(Retailer))
    rows = {r.slug: r for r in result.scalars().all()}
    retailers = []
    for slug in AdapterRegistry.list_retailers():
        row = rows.get(slug)
        retailers.append({
            "slug": slug,
            "name": row.name if row else slug,
            "is_active": row.is_active if row else False,
            "registered": row is not None,
        })
    return {"retailers": retailers}


@router.get("/health")
async def retailer_health():
    """Health summary for every adapter that has handled a call."""
    return {"adapters": adapter_health.get_health_summary()}


@router.post("/{slug}/availability")
async def check_availability(
    body: AvailabilityRequestBody,
    adapter: BaseRetailerAdapter = Depends(get_adapter),
):
    """Check one product's availability at a retailer."""
    try:
        record = await adapter.check_availability(AvailabilityRequest(**body.model_dump()))
    except RetailerError as e:
        raise _to_http_error(e)
    return _record_to_dict(record)


@router.get("/{slug}/search")
async def search_products(
    q: str,
    adapter: BaseRetailerAdapter = Depends(get_adapter),
):
    """Search a retailer for in-category products."""
    try:
        records = await adapter.search_products(q)
    except RetailerError as e:
        raise _to_http_error(e)
    return {"results": [_record_to_dict(r) for r in records]}

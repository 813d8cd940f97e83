"""FastAPI dependencies."""

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from dropwatch.db.session import get_db
from dropwatch.ingest.adapter import BaseRetailerAdapter
from dropwatch.ingest.registry import AdapterRegistry


async def get_database() -> AsyncSession:
    """Dependency for database session."""
    async for session in get_db():
        yield session
        break  # Only yield once, as FastAPI handles the session lifecycle


def get_adapter(slug: str) -> BaseRetailerAdapter:
    """
    Dependency resolving the adapter for a path slug.

    Raises:
        HTTPException: 404 if the retailer is not registered
    """
    if not AdapterRegistry.is_supported(slug):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown retailer: {slug}",
        )
    return AdapterRegistry.get_adapter(slug)

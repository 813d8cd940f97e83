"""Drop-window prediction routes."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from dropwatch.predict.engine import PredictionQuery, prediction_engine

router = APIRouter(prefix="/api/predictions", tags=["predictions"])


class PredictedWindowResponse(BaseModel):
    retailer_id: str
    start: datetime
    end: datetime
    confidence: int
    rationale: List[str]
    shadow_probability: Optional[float] = None

    class Config:
        from_attributes = True


@router.get("", response_model=List[PredictedWindowResponse])
async def predict_windows(
    retailer: Optional[str] = None,
    product_id: Optional[int] = None,
    horizon_minutes: Optional[int] = Query(None, ge=1),
    top_k: Optional[int] = Query(None, ge=1),
):
    """Ranked drop windows for a retailer; horizon and top_k are clamped server-side."""
    windows = await prediction_engine.predict_windows(PredictionQuery(
        product_id=product_id,
        retailer_slug=retailer,
        horizon_minutes=horizon_minutes,
        top_k=top_k,
    ))
    return [PredictedWindowResponse.model_validate(w) for w in windows]

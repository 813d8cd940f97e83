"""Drop-window prediction engine.

Strategies are tried in order and the first one that yields a window inside
the horizon wins:

1. trained hour model for the retailer
2. product in-stock snapshot histogram
3. per-retailer default hours
4. a single window starting now

A failing strategy is logged and the next one is tried, so a well-formed
query always gets at least one window back.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from dropwatch import metrics
from dropwatch.cache import cache
from dropwatch.config import settings
from dropwatch.db.models import AvailabilitySnapshot
from dropwatch.predict.classifier import DropClassifier
from dropwatch.predict.hour_model import HourModelStore, hour_model_store
from dropwatch.utils.timeutil import next_hour_occurrence, utcnow

logger = logging.getLogger(__name__)

WINDOW_LENGTH = timedelta(hours=1)

TAG_HOUR_MODEL = "trained_hour_histogram"
TAG_SNAPSHOTS = "availability_snapshot_hour_histogram"
TAG_DEFAULTS = "retailer_default_pattern"
TAG_FALLBACK = "fallback"
TAG_SHADOW = "shadow_classifier"
TAG_PRIMARY = "primary_classifier_enabled"
TAG_BELOW_THRESHOLD = "primary_classifier_below_threshold"


@dataclass(frozen=True)
class PredictionQuery:
    product_id: Optional[int] = None
    retailer_slug: Optional[str] = None
    horizon_minutes: Optional[int] = None
    top_k: Optional[int] = None

    def normalized(self) -> "PredictionQuery":
        """Fill defaults and clamp horizon to 30..1440 minutes and top_k to 1..5."""
        horizon = self.horizon_minutes if self.horizon_minutes is not None else 180
        top_k = self.top_k if self.top_k is not None else 3
        return PredictionQuery(
            product_id=self.product_id,
            retailer_slug=self.retailer_slug or settings.default_retailer_slug,
            horizon_minutes=max(30, min(horizon, 1440)),
            top_k=max(1, min(top_k, 5)),
        )


@dataclass
class PredictedWindow:
    retailer_id: str  # retailer slug
    start: datetime
    end: datetime
    confidence: int  # 0-100
    rationale: list[str] = field(default_factory=list)
    shadow_probability: Optional[float] = None

    def to_dict(self) -> dict:
        data = {
            "retailer_id": self.retailer_id,
            "start": self.start.isoformat() + "Z",
            "end": self.end.isoformat() + "Z",
            "confidence": self.confidence,
            "rationale": list(self.rationale),
        }
        if self.shadow_probability is not None:
            data["shadow_probability"] = self.shadow_probability
        return data


class DropPredictionEngine:
    """Ranks the upcoming hour windows in which a product is likely to drop."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        hour_models: Optional[HourModelStore] = None,
        classifier: Optional[DropClassifier] = None,
    ):
        if session_factory is None:
            from dropwatch.db.session import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.hour_models = hour_models or hour_model_store
        self.classifier = classifier

    async def predict_windows(self, query: PredictionQuery) -> list[PredictedWindow]:
        """
        Predict drop windows for a retailer (and optionally a product).

        Args:
            query: Prediction query; out-of-range values are clamped

        Returns:
            Ranked windows, never empty
        """
        query = query.normalized()
        now = utcnow()

        windows: list[PredictedWindow] = []
        for strategy in (self._from_hour_model, self._from_snapshots, self._from_defaults):
            try:
                windows = await strategy(query, now)
            except Exception as e:
                logger.warning(
                    f"{strategy.__name__} failed for product {query.product_id} "
                    f"at {query.retailer_slug}, trying next strategy: {e}"
                )
                windows = []
            if windows:
                break
        if not windows:
            windows = [self._fallback(query, now)]

        await self._apply_classifier(query, windows)

        metrics.record_prediction(query.retailer_slug, windows[0].rationale[0])
        return windows

    def _hour_windows(
        self, query: PredictionQuery, now: datetime, hours: list[tuple[int, float]], tag: str
    ) -> list[PredictedWindow]:
        """Windows at the next occurrence of each (hour, confidence) inside the horizon."""
        horizon = timedelta(minutes=query.horizon_minutes)
        windows = []
        for hour, confidence in hours:
            start = next_hour_occurrence(now, hour)
            if start - now <= horizon:
                windows.append(PredictedWindow(
                    retailer_id=query.retailer_slug,
                    start=start,
                    end=start + WINDOW_LENGTH,
                    confidence=int(round(confidence)),
                    rationale=[tag],
                ))
        return windows

    async def _from_hour_model(self, query: PredictionQuery, now: datetime) -> list[PredictedWindow]:
        model = self.hour_models.current.get(query.retailer_slug)
        if model is None:
            return []
        ranked = [(hour, weight * 100) for hour, weight in model.ranked_hours(query.top_k)]
        return self._hour_windows(query, now, ranked, TAG_HOUR_MODEL)

    async def _from_snapshots(self, query: PredictionQuery, now: datetime) -> list[PredictedWindow]:
        if query.product_id is None:
            return []
        since = now - timedelta(days=settings.snapshot_lookback_days)
        stmt = (
            select(AvailabilitySnapshot.snapshot_time)
            .where(
                AvailabilitySnapshot.product_id == query.product_id,
                AvailabilitySnapshot.snapshot_time >= since,
                AvailabilitySnapshot.in_stock.is_(True),
            )
            .order_by(AvailabilitySnapshot.snapshot_time.asc())
            .limit(settings.snapshot_max_rows)
        )
        async with self.session_factory() as db:
            times = list((await db.execute(stmt)).scalars().all())
        if not times:
            return []

        by_hour = Counter(t.hour for t in times)
        total = sum(by_hour.values())
        ranked = sorted(by_hour.items(), key=lambda item: (-item[1], item[0]))[: query.top_k]
        return self._hour_windows(
            query, now, [(hour, count / total * 100) for hour, count in ranked], TAG_SNAPSHOTS
        )

    async def _from_defaults(self, query: PredictionQuery, now: datetime) -> list[PredictedWindow]:
        hours = settings.default_retailer_hours.get(query.retailer_slug) or settings.fallback_default_hours
        confidence = 60 if len(hours) > 1 else 50
        return self._hour_windows(
            query, now, [(hour, confidence) for hour in hours[: query.top_k]], TAG_DEFAULTS
        )

    def _fallback(self, query: PredictionQuery, now: datetime) -> PredictedWindow:
        return PredictedWindow(
            retailer_id=query.retailer_slug,
            start=now,
            end=now + WINDOW_LENGTH,
            confidence=30,
            rationale=[TAG_FALLBACK],
        )

    async def _apply_classifier(self, query: PredictionQuery, windows: list[PredictedWindow]) -> None:
        """Attach shadow probabilities and, when promoted, let them set confidence."""
        if self.classifier is None or not settings.drop_classifier_shadow:
            return

        horizon = max(15, min(query.horizon_minutes, 240))
        try:
            probability = await self.classifier.shadow_probability(
                query.product_id, query.retailer_slug, horizon
            )
        except Exception as e:
            logger.warning(f"Shadow classifier failed for {query.retailer_slug}: {e}")
            return

        for window in windows:
            window.shadow_probability = round(probability, 2)
            window.rationale.append(TAG_SHADOW)

        try:
            primary, threshold = await self.classifier.runtime_flags()
        except Exception as e:
            logger.warning(f"Could not read classifier rollout flags: {e}")
            return
        if not primary:
            return
        if not self.classifier.calibration.calibrated:
            logger.info("Primary classifier requested but no calibration is loaded; keeping heuristic confidence")
            return

        for window in windows:
            p = window.shadow_probability
            window.confidence = int(round(p * 100))
            window.rationale.append(TAG_PRIMARY if p >= threshold else TAG_BELOW_THRESHOLD)


# Global engine instance
prediction_engine = DropPredictionEngine(classifier=DropClassifier(cache=cache))

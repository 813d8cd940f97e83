"""Shadow drop classifier.

Scores the probability that a (product, retailer) pair goes live within a
horizon. The raw score is a fixed linear combination of the retailer hour
weight and recent signal activity; a logistic calibration ``sigmoid(a*z + b)``
loaded from disk turns it into a probability.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dropwatch.config import settings
from dropwatch.db.models import AvailabilitySnapshot, DropEvent
from dropwatch.predict.hour_model import HOURS, HourModelStore, hour_model_store
from dropwatch.signals.store import SIGNAL_TYPES, resolve_retailer_id
from dropwatch.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

PRIMARY_FLAG_KEY = "config:drop_classifier:primary_enabled"
THRESHOLD_FLAG_KEY = "config:drop_classifier:threshold"

UNKNOWN_RETAILER_PROBABILITY = 0.1
UNIFORM_HOUR_WEIGHT = 1 / HOURS


@dataclass(frozen=True)
class Calibration:
    a: float = 1.0
    b: float = 0.0
    calibrated: bool = False  # False when no calibration file was found
    trained_at: Optional[str] = None
    metrics: dict = field(default_factory=dict)


@dataclass
class DropFeatures:
    """Inputs to the raw score."""
    hour_weight: float
    counts: dict[str, int]
    availability_ratio: float

    def raw_score(self) -> float:
        c = self.counts
        return (
            1.5 * self.hour_weight
            + 0.8 * min(1.0, c.get("url_live", 0) / 5)
            + 0.4 * min(1.0, c.get("price_present", 0) / 10)
            + 0.3 * min(1.0, c.get("status_change", 0) / 10)
            + 0.2 * min(1.0, c.get("url_seen", 0) / 10)
            - 0.5 * max(0.0, 0.5 - self.availability_ratio)
        )


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    ex = math.exp(x)
    return ex / (1.0 + ex)


def load_calibration(path: Path) -> Calibration:
    """Read ``{a, b}`` from ``path``; missing or unreadable files give the identity calibration."""
    if not path.exists():
        return Calibration()
    try:
        data = json.loads(path.read_text())
        return Calibration(
            a=float(data.get("a", 1.0)),
            b=float(data.get("b", 0.0)),
            calibrated=True,
            trained_at=data.get("trained_at") or data.get("trainedAt"),
            metrics=data.get("metrics") or {},
        )
    except (OSError, ValueError, TypeError) as e:
        logger.warning(f"Ignoring unreadable calibration file {path}: {e}")
        return Calibration()


def hour_weight_at(weights: Optional[tuple[float, ...]], at: datetime) -> float:
    """Weight of the UTC hour containing ``at``; zero or missing weights count as uniform."""
    if not weights:
        return UNIFORM_HOUR_WEIGHT
    return weights[at.hour] or UNIFORM_HOUR_WEIGHT


async def collect_features(
    db: AsyncSession,
    product_id: int,
    retailer_id: int,
    weights: Optional[tuple[float, ...]],
    at: datetime,
    horizon_minutes: int,
    history_days: int,
) -> DropFeatures:
    """Features for a pair as of ``at`` from the ``history_days`` before it."""
    since = at - timedelta(days=history_days)

    count_query = (
        select(DropEvent.signal_type, func.count())
        .where(
            DropEvent.product_id == product_id,
            DropEvent.retailer_id == retailer_id,
            DropEvent.observed_at >= since,
            DropEvent.observed_at < at,
        )
        .group_by(DropEvent.signal_type)
    )
    counts = {signal_type: 0 for signal_type in SIGNAL_TYPES}
    for signal_type, count in (await db.execute(count_query)).all():
        counts[signal_type] = int(count)

    snapshot_query = (
        select(AvailabilitySnapshot.in_stock)
        .where(
            AvailabilitySnapshot.product_id == product_id,
            AvailabilitySnapshot.retailer_id == retailer_id,
            AvailabilitySnapshot.snapshot_time >= since,
            AvailabilitySnapshot.snapshot_time < at,
        )
        .limit(2000)
    )
    flags = list((await db.execute(snapshot_query)).scalars().all())
    availability = sum(1 for f in flags if f) / len(flags) if flags else 0.0

    return DropFeatures(
        hour_weight=hour_weight_at(weights, at + timedelta(minutes=horizon_minutes)),
        counts=counts,
        availability_ratio=availability,
    )


class DropClassifier:
    """Computes shadow probabilities and reads rollout flags."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        cache=None,
        hour_models: Optional[HourModelStore] = None,
        calibration_path: Optional[str] = None,
    ):
        if session_factory is None:
            from dropwatch.db.session import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.cache = cache
        self.hour_models = hour_models or hour_model_store
        self.calibration_path = Path(calibration_path or settings.drop_classifier_calibration_path)
        self._calibration: Optional[Calibration] = None

    @property
    def calibration(self) -> Calibration:
        if self._calibration is None:
            self._calibration = load_calibration(self.calibration_path)
        return self._calibration

    def reload_calibration(self) -> Calibration:
        self._calibration = None
        return self.calibration

    async def shadow_probability(
        self, product_id: Optional[int], retailer_slug: str, horizon_minutes: int = 60
    ) -> float:
        """Probability (0-1) that the pair goes live within ``horizon_minutes``."""
        horizon_minutes = max(15, min(horizon_minutes, 240))
        now = utcnow()
        model = self.hour_models.current.get(retailer_slug)
        weights = model.hour_weights if model else None

        async with self.session_factory() as db:
            retailer_id = await resolve_retailer_id(db, retailer_slug)
            if retailer_id is None:
                return UNKNOWN_RETAILER_PROBABILITY
            if product_id is None:
                features = DropFeatures(
                    hour_weight=hour_weight_at(weights, now + timedelta(minutes=horizon_minutes)),
                    counts={},
                    availability_ratio=0.0,
                )
            else:
                features = await collect_features(
                    db, product_id, retailer_id, weights, now,
                    horizon_minutes, settings.drop_classifier_feature_days,
                )

        cal = self.calibration
        return max(0.0, min(1.0, sigmoid(cal.a * features.raw_score() + cal.b)))

    async def runtime_flags(self) -> tuple[bool, float]:
        """(primary_enabled, threshold), cache values overriding settings."""
        primary = settings.drop_classifier_primary_enabled
        threshold = settings.drop_classifier_threshold
        if self.cache is None:
            return primary, threshold
        try:
            raw_primary = await self.cache.get(PRIMARY_FLAG_KEY)
            raw_threshold = await self.cache.get(THRESHOLD_FLAG_KEY)
        except Exception as e:
            logger.warning(f"Could not read classifier flags from cache: {e}")
            return primary, threshold
        if raw_primary is not None:
            primary = raw_primary.strip().lower() == "true"
        if raw_threshold:
            try:
                threshold = float(raw_threshold)
            except ValueError:
                logger.warning(f"Ignoring non-numeric classifier threshold: {raw_threshold!r}")
        return primary, threshold

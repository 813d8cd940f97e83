"""Model training for drop prediction.

``HourModelTrainer`` rebuilds the per-retailer hour-of-day histogram from
live/in-stock signals. ``CalibratorTrainer`` fits the logistic calibration
used by the shadow classifier.
"""

import json
import logging
from datetime import timedelta
from pathlib import Path
from types import MappingProxyType
from typing import Optional

import numpy as np
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import roc_auc_score
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dropwatch import metrics
from dropwatch.config import settings
from dropwatch.db.models import DropEvent, Retailer
from dropwatch.predict.classifier import DropClassifier, collect_features
from dropwatch.predict.hour_model import (
    HOURS,
    HourModelSet,
    HourModelStore,
    RetailerHourModel,
    hour_model_store,
)
from dropwatch.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

LIVE_SIGNALS = ("url_live", "in_stock")


def _default_session_factory() -> async_sessionmaker:
    from dropwatch.db.session import AsyncSessionLocal
    return AsyncSessionLocal


class HourModelTrainer:
    """
    Builds a RetailerHourModel per retailer.

    Events are bucketed by UTC hour and each retailer's 24 counts are
    normalized to sum to 1. Retailers with no events are left out. The new
    set is persisted first and then published; a failed run leaves the
    previously published set in place.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        store: Optional[HourModelStore] = None,
        max_events: Optional[int] = None,
    ):
        self.session_factory = session_factory or _default_session_factory()
        self.store = store or hour_model_store
        self.max_events = max_events or settings.hour_model_max_events

    async def train(self, horizon_days: Optional[int] = None) -> dict:
        """
        Train and publish a new hour model.

        Returns:
            Dict with training statistics
        """
        horizon_days = horizon_days or settings.hour_model_horizon_days
        started = utcnow()
        logger.info(f"Training hour model over the last {horizon_days} days")

        try:
            async with self.session_factory() as db:
                rows = await self._load_events(db, started - timedelta(days=horizon_days))
            model_set = self.build(rows, horizon_days, started)
            self.store.save(model_set)
            self.store.publish(model_set)
        except Exception as e:
            logger.error(f"Hour model training failed, keeping previous model: {e}", exc_info=True)
            metrics.record_training_run("hour_model", success=False)
            return {"success": False, "error": str(e)}

        metrics.record_training_run("hour_model", success=True, retailer_count=len(model_set.retailers))
        logger.info(
            f"Hour model trained: {len(rows)} events, {len(model_set.retailers)} retailers"
        )
        return {
            "success": True,
            "events": len(rows),
            "retailers": sorted(model_set.retailers),
            "horizon_days": horizon_days,
            "duration_seconds": (utcnow() - started).total_seconds(),
        }

    async def _load_events(self, db: AsyncSession, since) -> list[tuple[str, object]]:
        query = (
            select(Retailer.slug, DropEvent.observed_at)
            .join(Retailer, Retailer.id == DropEvent.retailer_id)
            .where(
                DropEvent.observed_at >= since,
                DropEvent.signal_type.in_(LIVE_SIGNALS),
            )
            .limit(self.max_events)
        )
        result = await db.execute(query)
        return [(slug, observed_at) for slug, observed_at in result.all()]

    @staticmethod
    def build(rows, horizon_days: int, trained_at) -> HourModelSet:
        """Histogram ``(slug, observed_at)`` rows into a normalized model set."""
        counts: dict[str, np.ndarray] = {}
        for slug, observed_at in rows:
            if slug not in counts:
                counts[slug] = np.zeros(HOURS)
            counts[slug][observed_at.hour] += 1

        retailers = {}
        for slug, buckets in counts.items():
            total = int(buckets.sum())
            weights = np.round(buckets / total, 9)
            retailers[slug] = RetailerHourModel(
                retailer_slug=slug,
                hour_weights=tuple(float(w) for w in weights),
                total_events=total,
                trained_at=trained_at,
            )
        return HourModelSet(trained_at=trained_at, horizon_days=horizon_days, retailers=MappingProxyType(retailers))


class CalibratorTrainer:
    """
    Fits ``p = sigmoid(a*s + b)`` on historical raw scores.

    Sample points are taken every ``step_minutes`` for each (product,
    retailer) pair with recent signals. Each point is labeled 1 when a
    url_live or in_stock signal follows within ``horizon_minutes``.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        hour_models: Optional[HourModelStore] = None,
        output_path: Optional[str] = None,
        classifier: Optional[DropClassifier] = None,
    ):
        self.session_factory = session_factory or _default_session_factory()
        self.hour_models = hour_models or hour_model_store
        self.output_path = Path(output_path or settings.drop_classifier_calibration_path)
        self.classifier = classifier
        self.lookback_days = max(7, min(settings.calibrator_lookback_days, 120))
        self.horizon_minutes = max(30, min(settings.calibrator_horizon_minutes, 240))
        self.history_days = max(1, min(settings.calibrator_history_days, 30))
        self.step_minutes = max(30, min(settings.calibrator_step_minutes, 180))
        self.max_samples = max(50, min(settings.calibrator_max_samples, 20000))
        self.min_samples = settings.calibrator_min_samples

    async def train(self) -> dict:
        logger.info("Starting drop classifier calibration")
        try:
            async with self.session_factory() as db:
                scores, labels = await self._collect_samples(db)
        except Exception as e:
            logger.error(f"Calibration sampling failed: {e}", exc_info=True)
            metrics.record_training_run("calibrator", success=False)
            return {"success": False, "error": str(e)}

        if len(scores) < self.min_samples:
            logger.warning(
                f"Insufficient calibration data: {len(scores)} samples (need {self.min_samples})"
            )
            metrics.record_training_run("calibrator", success=False)
            return {
                "success": False,
                "error": "Insufficient training data",
                "samples": len(scores),
                "min_required": self.min_samples,
            }

        y = np.array(labels)
        if y.min() == y.max():
            logger.warning("Calibration samples contain a single class, skipping fit")
            metrics.record_training_run("calibrator", success=False)
            return {"success": False, "error": "Single-class training data", "samples": len(scores)}

        X = np.array(scores).reshape(-1, 1)
        model = LogisticRegression(C=1e6)
        model.fit(X, y)
        probabilities = model.predict_proba(X)[:, 1]

        k = max(1, int(0.1 * len(probabilities)))
        top = np.argsort(-probabilities)[:k]
        calibration = {
            "a": float(model.coef_[0][0]),
            "b": float(model.intercept_[0]),
            "trained_at": utcnow().isoformat() + "Z",
            "metrics": {
                "rows": len(scores),
                "auc": round(float(roc_auc_score(y, probabilities)), 4),
                "precision_at_10": round(float(y[top].mean()), 4),
            },
        }

        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        self.output_path.write_text(json.dumps(calibration, indent=2))
        if self.classifier is not None:
            self.classifier.reload_calibration()

        metrics.record_training_run("calibrator", success=True)
        logger.info(
            f"Calibration trained: a={calibration['a']:.4f} b={calibration['b']:.4f} "
            f"auc={calibration['metrics']['auc']} p@10={calibration['metrics']['precision_at_10']}"
        )
        return {"success": True, **calibration}

    async def _collect_samples(self, db: AsyncSession) -> tuple[list[float], list[int]]:
        now = utcnow()
        start = now - timedelta(days=self.lookback_days)
        step = timedelta(minutes=self.step_minutes)
        horizon = timedelta(minutes=self.horizon_minutes)

        pairs_query = (
            select(
                DropEvent.product_id,
                DropEvent.retailer_id,
                Retailer.slug,
                func.max(DropEvent.observed_at),
            )
            .join(Retailer, Retailer.id == DropEvent.retailer_id)
            .where(DropEvent.observed_at >= start)
            .group_by(DropEvent.product_id, DropEvent.retailer_id, Retailer.slug)
            .limit(1000)
        )
        pairs = (await db.execute(pairs_query)).all()

        scores: list[float] = []
        labels: list[int] = []
        models = self.hour_models.current
        for product_id, retailer_id, slug, last_seen in pairs:
            model = models.get(slug)
            weights = model.hour_weights if model else None
            t = start
            while t < last_seen and len(scores) < self.max_samples:
                features = await collect_features(
                    db, product_id, retailer_id, weights, t,
                    self.horizon_minutes, self.history_days,
                )
                scores.append(features.raw_score())
                labels.append(await self._label(db, product_id, retailer_id, t, t + horizon))
                t += step
            if len(scores) >= self.max_samples:
                break
        return scores, labels

    @staticmethod
    async def _label(db: AsyncSession, product_id: int, retailer_id: int, start, end) -> int:
        query = (
            select(DropEvent.id)
            .where(
                DropEvent.product_id == product_id,
                DropEvent.retailer_id == retailer_id,
                DropEvent.observed_at >= start,
                DropEvent.observed_at <= end,
                DropEvent.signal_type.in_(LIVE_SIGNALS),
            )
            .limit(1)
        )
        return 1 if (await db.execute(query)).first() is not None else 0

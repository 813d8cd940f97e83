"""Background tasks: availability scans, hot-window refresh and model training."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from dropwatch import metrics
from dropwatch.cache import cache
from dropwatch.config import settings
from dropwatch.db.models import Product, Retailer, RetailerProduct
from dropwatch.db.session import AsyncSessionLocal
from dropwatch.ingest.base import AvailabilityRequest
from dropwatch.ingest.errors import RetailerError
from dropwatch.ingest.registry import AdapterRegistry
from dropwatch.predict.engine import prediction_engine
from dropwatch.predict.trainer import CalibratorTrainer, HourModelTrainer
from dropwatch.signals.channel import (
    Observation,
    SignalChannel,
    SignalRecorder,
    observation_from_record,
    signal_channel,
)
from dropwatch.signals.store import SignalStore
from dropwatch.utils.timeutil import utcnow
from dropwatch.worker.hot_windows import HotWindowScheduler, hot_windows

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanTarget:
    """One (product, retailer) pair to check."""
    product_id: int
    retailer_id: int
    retailer_slug: str
    name: str
    sku: Optional[str]
    upc: Optional[str]
    product_url: Optional[str]


@dataclass
class ScanSummary:
    checked: int = 0
    in_stock: int = 0
    errors: list[str] = field(default_factory=list)


class TaskRunner:
    """
    Runner for background tasks.

    Availability scans publish an Observation per checked pair on the signal
    channel; the SignalRecorder subscribed in ``initialize`` turns them into
    signal events, snapshots and drop outcomes.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        channel: Optional[SignalChannel] = None,
        hot: Optional[HotWindowScheduler] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.channel = channel or signal_channel
        self.hot_windows = hot or hot_windows
        self.recorder: SignalRecorder | None = None
        self._recorder_task: asyncio.Task | None = None
        self._recorder_queue: asyncio.Queue | None = None

    async def initialize(self):
        """Start the signal recorder."""
        self.recorder = SignalRecorder(SignalStore(self.session_factory, cache=cache))
        self._recorder_queue = self.channel.subscribe()
        self._recorder_task = asyncio.create_task(self.recorder.run(self._recorder_queue))
        logger.info("Task runner initialized")

    async def close(self):
        """Drain the recorder and release adapters."""
        if self._recorder_task is not None:
            await self.channel.close()
            try:
                await asyncio.wait_for(self._recorder_task, timeout=30)
            except asyncio.TimeoutError:
                logger.warning("Signal recorder did not drain in time, cancelling")
                self._recorder_task.cancel()
            self.channel.unsubscribe(self._recorder_queue)
            self._recorder_task = None
        await AdapterRegistry.close()
        await cache.close()

    async def load_targets(self) -> list[ScanTarget]:
        """Active (product, retailer) pairs with a supported adapter."""
        query = (
            select(RetailerProduct, Product, Retailer)
            .join(Product, Product.id == RetailerProduct.product_id)
            .join(Retailer, Retailer.id == RetailerProduct.retailer_id)
            .where(
                RetailerProduct.is_active.is_(True),
                Product.is_active.is_(True),
                Retailer.is_active.is_(True),
            )
            .order_by(Product.popularity_score.desc())
        )
        async with self.session_factory() as db:
            rows = (await db.execute(query)).all()

        return [
            ScanTarget(
                product_id=product.id,
                retailer_id=retailer.id,
                retailer_slug=retailer.slug,
                name=product.name,
                sku=link.sku or product.sku,
                upc=product.upc,
                product_url=link.product_url,
            )
            for link, product, retailer in rows
            if AdapterRegistry.is_supported(retailer.slug)
        ]

    async def scan_availability(self) -> ScanSummary:
        """
        Check availability for scan targets with a bounded worker pool.

        When any hot window is active only hot pairs are checked; otherwise
        every target is.
        """
        summary = ScanSummary()
        targets = await self.load_targets()
        if not targets:
            logger.info("No scan targets configured")
            return summary

        if await self.hot_windows.has_active_hot_window():
            hot = [t for t in targets if await self._is_hot(t)]
            if hot:
                targets = hot

        semaphore = asyncio.Semaphore(max(1, settings.scan_worker_count))

        async def worker(target: ScanTarget):
            async with semaphore:
                try:
                    await self._check_target(target, summary)
                except Exception as e:
                    summary.errors.append(f"{target.retailer_slug}:{target.product_id}: {e}")
                    logger.error(
                        f"Scan worker error for {target.product_id} at {target.retailer_slug}: {e}",
                        exc_info=True,
                    )

        await asyncio.gather(*(worker(t) for t in targets))
        logger.info(
            f"Availability scan complete: {summary.checked} checked, "
            f"{summary.in_stock} in stock, {len(summary.errors)} errors"
        )
        return summary

    async def _is_hot(self, target: ScanTarget) -> bool:
        try:
            return await self.hot_windows.is_hot(target.product_id, target.retailer_slug)
        except Exception as e:
            logger.warning(f"Hot marker lookup failed: {e}")
            return False

    async def _check_target(self, target: ScanTarget, summary: ScanSummary) -> None:
        adapter = AdapterRegistry.get_adapter(target.retailer_slug)
        request = AvailabilityRequest(
            product_id=target.product_id,
            sku=target.sku,
            upc=target.upc,
            product_url=target.product_url,
            query=target.name,
        )
        try:
            record = await adapter.check_availability(request)
        except RetailerError as e:
            summary.errors.append(f"{target.retailer_slug}:{target.product_id}: {e}")
            logger.warning(f"Availability check failed for {target.product_id} at {target.retailer_slug}: {e}")
            await self.channel.publish(Observation(
                product_id=target.product_id,
                retailer_id=target.retailer_id,
                retailer_slug=target.retailer_slug,
                observed_at=utcnow(),
                error_type=e.error_type,
            ))
            return

        summary.checked += 1
        if record.in_stock:
            summary.in_stock += 1
        await self.channel.publish(observation_from_record(record, target.retailer_id))

    # Scheduled entry points

    async def run_availability_scan(self):
        try:
            await self.scan_availability()
            metrics.record_scheduler_run("availability_scan", success=True)
        except Exception as e:
            logger.error(f"Availability scan failed: {e}", exc_info=True)
            metrics.record_scheduler_run("availability_scan", success=False)

    async def run_hot_window_refresh(self):
        try:
            await self.hot_windows.refresh_hot_windows()
            metrics.record_scheduler_run("hot_windows", success=True)
        except Exception as e:
            logger.error(f"Hot window refresh failed: {e}", exc_info=True)
            metrics.record_scheduler_run("hot_windows", success=False)

    async def run_hour_model_training(self):
        result = await HourModelTrainer().train()
        metrics.record_scheduler_run("hour_model", success=result["success"])

    async def run_calibrator_training(self):
        try:
            result = await CalibratorTrainer(classifier=prediction_engine.classifier).train()
            metrics.record_scheduler_run("calibrator", success=result["success"])
        except Exception as e:
            logger.error(f"Calibrator training failed: {e}", exc_info=True)
            metrics.record_scheduler_run("calibrator", success=False)


# Global task runner instance
task_runner = TaskRunner()

"""Per-retailer hour-of-day drop model.

A trained model is an immutable ``HourModelSet``. Readers take the current
set by reference, and the trainer publishes a new one by swapping that
reference, so a reader never sees a half-built model.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

from dropwatch.config import settings

logger = logging.getLogger(__name__)

HOURS = 24


@dataclass(frozen=True)
class RetailerHourModel:
    """Normalized hour weights for one retailer (sum to 1)."""
    retailer_slug: str
    hour_weights: tuple[float, ...]
    total_events: int
    trained_at: Optional[datetime] = None

    def __post_init__(self):
        if len(self.hour_weights) != HOURS:
            raise ValueError(f"Expected {HOURS} hour weights, got {len(self.hour_weights)}")

    def ranked_hours(self, limit: Optional[int] = None) -> list[tuple[int, float]]:
        """(hour, weight) pairs with positive weight, heaviest first (ties by hour)."""
        ranked = sorted(
            ((hour, w) for hour, w in enumerate(self.hour_weights) if w > 0),
            key=lambda item: (-item[1], item[0]),
        )
        return ranked[:limit] if limit is not None else ranked

    def weight(self, hour: int) -> float:
        return self.hour_weights[hour % HOURS]


@dataclass(frozen=True)
class HourModelSet:
    """All retailer models from one training run."""
    trained_at: Optional[datetime] = None
    horizon_days: int = 0
    retailers: Mapping[str, RetailerHourModel] = field(default_factory=lambda: MappingProxyType({}))

    def get(self, slug: str) -> Optional[RetailerHourModel]:
        return self.retailers.get(slug)

    def to_dict(self) -> dict:
        return {
            "trained_at": self.trained_at.isoformat() if self.trained_at else None,
            "horizon_days": self.horizon_days,
            "retailers": {
                slug: {"hour_weights": list(m.hour_weights), "total_events": m.total_events}
                for slug, m in self.retailers.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HourModelSet":
        raw_trained_at = data.get("trained_at") or data.get("trainedAt")
        trained_at = datetime.fromisoformat(raw_trained_at.rstrip("Z")) if raw_trained_at else None
        retailers = {}
        for slug, entry in (data.get("retailers") or {}).items():
            weights = tuple(float(w) for w in entry.get("hour_weights") or entry.get("hourWeights") or [])
            total = int(entry.get("total_events", entry.get("totalEvents", 0)))
            if len(weights) != HOURS or total <= 0:
                logger.warning(f"Skipping malformed hour model entry for {slug}")
                continue
            retailers[slug] = RetailerHourModel(slug, weights, total, trained_at)
        return cls(
            trained_at=trained_at,
            horizon_days=int(data.get("horizon_days", data.get("horizonDays", 0))),
            retailers=MappingProxyType(retailers),
        )


class HourModelStore:
    """Holds the currently published model set."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.hour_model_path)
        self._current = HourModelSet()

    @property
    def current(self) -> HourModelSet:
        return self._current

    def publish(self, model_set: HourModelSet) -> None:
        """Atomically replace the in-memory model set."""
        self._current = model_set
        logger.info(f"Published hour model for {len(model_set.retailers)} retailers")

    def save(self, model_set: HourModelSet) -> None:
        """Persist a model set as JSON (write to temp file, then rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(model_set.to_dict(), indent=2))
        tmp.replace(self.path)

    def load(self) -> bool:
        """Load and publish the persisted model. Returns False when absent or unreadable."""
        if not self.path.exists():
            logger.info(f"No hour model at {self.path}")
            return False
        try:
            model_set = HourModelSet.from_dict(json.loads(self.path.read_text()))
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Could not load hour model from {self.path}: {e}")
            return False
        self.publish(model_set)
        return True


# Global model store
hour_model_store = HourModelStore()

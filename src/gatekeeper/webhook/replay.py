"""Delivery-id de-duplication for webhook replay resistance.

Every accepted delivery id is recorded with its arrival time. A second
delivery carrying the same id is a replay until the record is swept, which
happens opportunistically once the record is older than the freshness
window. Sweeping only bounds memory; no correctness property depends on
when it runs.

The store sits behind the DeliveryStore protocol so a shared backend can be
substituted for multi-instance deployments. Its one mutating primitive is
an atomic insert-if-absent, which closes the check-then-act window between
two concurrent deliveries that share an id.
"""

import logging
import math
import random
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Protocol, Union, runtime_checkable

from src.gatekeeper.webhook.models import DeliveryRecord, RejectionReason, ReplayResult


logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_WINDOW_SECONDS = 300.0
DEFAULT_SWEEP_PROBABILITY = 0.01

DeliveryTimestamp = Union[datetime, int, float, str]


def _finite(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


@runtime_checkable
class DeliveryStore(Protocol):
    """Storage for accepted delivery ids."""

    def insert_if_absent(self, record: DeliveryRecord) -> bool:
        """Store ``record`` unless its id is already present.

        Returns:
            True if the record was stored, False if the id already existed.
        """
        ...

    def sweep(self, older_than_ms: int) -> int:
        """Remove records received before ``older_than_ms``.

        Returns:
            Number of records removed.
        """
        ...

    def __contains__(self, delivery_id: object) -> bool:
        ...

    def __len__(self) -> int:
        ...


class InMemoryDeliveryStore:
    """Lock-guarded in-process delivery store."""

    def __init__(self) -> None:
        self._records: Dict[str, DeliveryRecord] = {}
        self._lock = threading.Lock()

    def insert_if_absent(self, record: DeliveryRecord) -> bool:
        with self._lock:
            if record.delivery_id in self._records:
                return False
            self._records[record.delivery_id] = record
            return True

    def sweep(self, older_than_ms: int) -> int:
        with self._lock:
            expired = [
                delivery_id
                for delivery_id, record in self._records.items()
                if record.received_at_ms < older_than_ms
            ]
            for delivery_id in expired:
                del self._records[delivery_id]
        return len(expired)

    def get(self, delivery_id: str) -> Optional[DeliveryRecord]:
        with self._lock:
            return self._records.get(delivery_id)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __contains__(self, delivery_id: object) -> bool:
        with self._lock:
            return delivery_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def parse_delivery_timestamp(value: DeliveryTimestamp) -> Optional[float]:
    """Convert a delivery timestamp to epoch seconds.

    Accepts aware or naive (assumed UTC) datetimes, epoch seconds, numeric
    strings and ISO-8601 strings (a trailing ``Z`` is accepted).

    Returns:
        Epoch seconds, or None if the value cannot be parsed or is not
        finite.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()

    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return _finite(float(value))

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return _finite(float(text))
        except ValueError:
            pass
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()

    return None


class ReplayGuard:
    """Time-bounded delivery-id de-duplication.

    ``admit`` is synchronous on purpose: running it inside a coroutine never
    yields between the freshness check and the insert.

    Attributes:
        store: Delivery store shared by every request.
        freshness_window_seconds: Maximum accepted timestamp skew and the
            record TTL used by the sweep.
        sweep_probability: Chance per call of running the sweep.

    Example:
        >>> guard = ReplayGuard(InMemoryDeliveryStore())
        >>> guard.admit("d-1").is_replay
        False
        >>> guard.admit("d-1").reason
        <RejectionReason.ALREADY_PROCESSED: 'already_processed'>
    """

    def __init__(
        self,
        store: Optional[DeliveryStore] = None,
        freshness_window_seconds: float = DEFAULT_FRESHNESS_WINDOW_SECONDS,
        sweep_probability: float = DEFAULT_SWEEP_PROBABILITY,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
    ):
        if freshness_window_seconds <= 0:
            raise ValueError("freshness_window_seconds must be positive")
        if not 0.0 <= sweep_probability <= 1.0:
            raise ValueError("sweep_probability must be between 0 and 1")
        self.store = store if store is not None else InMemoryDeliveryStore()
        self.freshness_window_seconds = freshness_window_seconds
        self.sweep_probability = sweep_probability
        self._clock = clock
        self._rng = rng

    @property
    def freshness_window_ms(self) -> int:
        return int(self.freshness_window_seconds * 1000)

    def admit(
        self,
        delivery_id: Optional[str],
        delivery_timestamp: Optional[DeliveryTimestamp] = None,
    ) -> ReplayResult:
        """Admit a delivery id once.

        Args:
            delivery_id: Delivery id header value, if any.
            delivery_timestamp: Sender-reported delivery time, if any.

        Returns:
            ReplayResult. Missing ids are not replays but carry
            MISSING_DELIVERY_ID; stale timestamps and known ids are replays.
        """
        if not delivery_id:
            return ReplayResult(
                is_replay=False,
                reason=RejectionReason.MISSING_DELIVERY_ID,
            )

        now = self._clock()

        if delivery_timestamp is not None:
            sent_at = parse_delivery_timestamp(delivery_timestamp)
            if sent_at is None or abs(now - sent_at) > self.freshness_window_seconds:
                logger.warning(
                    "Webhook timestamp outside freshness window",
                    extra={"delivery_id": delivery_id},
                )
                return ReplayResult(
                    is_replay=True,
                    reason=RejectionReason.STALE_TIMESTAMP,
                )

        now_ms = int(now * 1000)
        record = DeliveryRecord(delivery_id=delivery_id, received_at_ms=now_ms)
        if not self.store.insert_if_absent(record):
            logger.warning(
                "Webhook delivery already processed",
                extra={"delivery_id": delivery_id},
            )
            return ReplayResult(
                is_replay=True,
                reason=RejectionReason.ALREADY_PROCESSED,
            )

        if self._rng() < self.sweep_probability:
            self.sweep(now_ms)

        return ReplayResult(is_replay=False)

    def sweep(self, now_ms: Optional[int] = None) -> int:
        """Drop records older than the freshness window.

        Returns:
            Number of records removed.
        """
        if now_ms is None:
            now_ms = int(self._clock() * 1000)
        removed = self.store.sweep(now_ms - self.freshness_window_ms)
        if removed:
            logger.debug(
                "Swept expired webhook delivery records",
                extra={"removed": removed},
            )
        return removed

"""Best-effort side effects.

Analytics writes that must never fail the request they ride on go through
run_effect(), which returns an EffectResult instead of raising. Detailed
tracking events go through EventWriter, a non-blocking queue flushed by a
background thread.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable

from beacon.core.constants import MAX_ERROR_MESSAGE

if TYPE_CHECKING:
    from beacon.storage.database import Database

logger = logging.getLogger(__name__)


@dataclass
class EffectResult:
    """Outcome of one best-effort side effect."""
    name: str
    ok: bool
    value: Any = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {"ok": self.ok, "error": self.error}


def run_effect(name: str, fn: Callable[..., Any], *args, **kwargs) -> EffectResult:
    """Run fn, logging and capturing any exception instead of propagating it."""
    try:
        return EffectResult(name=name, ok=True, value=fn(*args, **kwargs))
    except Exception as exc:
        logger.warning("Side effect '%s' failed", name, exc_info=True)
        return EffectResult(name=name, ok=False, error=str(exc)[:MAX_ERROR_MESSAGE])


# ============================================================
# EventWriter: non-blocking tracking event log
# ============================================================

@dataclass
class TrackingEvent:
    """Single user action against a component."""
    component_id: str
    action: str
    user_id: str | None = None
    metadata: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventWriter:
    """Thread-safe, non-blocking tracking event writer.

    Events are enqueued and flushed to component_usage_events in batches
    by a background thread. A full queue drops the event.
    """

    BATCH_SIZE = 500

    def __init__(self, db: Database, *, queue_max: int = 10_000, flush_interval: float = 5.0):
        self.db = db
        self.flush_interval = flush_interval
        self._queue: queue.Queue[TrackingEvent] = queue.Queue(maxsize=queue_max)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.dropped = 0

    def record(self, event: TrackingEvent) -> bool:
        """Enqueue an event. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            logger.warning("EventWriter: queue full, dropped %s event", event.action)
            return False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Start the background flush thread."""
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._flush_loop, daemon=True, name="EventWriter",
        )
        self._thread.start()
        logger.info("EventWriter: started")

    def stop(self) -> None:
        """Signal stop and wait for final flush."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=10)
        if self._thread.is_alive():
            logger.warning("EventWriter: thread did not stop within timeout")
        else:
            logger.info("EventWriter: stopped")
        self._thread = None

    def _flush_loop(self) -> None:
        while not self._stop_event.is_set():
            self._flush_batch()
            self._stop_event.wait(timeout=self.flush_interval)
        # Final drain on shutdown
        self._flush_batch()

    def _flush_batch(self) -> int:
        batch: list[TrackingEvent] = []
        while len(batch) < self.BATCH_SIZE:
            try:
                batch.append(self._queue.get_nowait())
            except queue.Empty:
                break

        if not batch:
            return 0

        try:
            for ev in batch:
                self.db.execute(
                    """
                    INSERT INTO component_usage_events
                        (component_id, action, user_id, metadata, created_at)
                    VALUES (%s, %s, %s, %s::jsonb, %s)
                    """,
                    (
                        ev.component_id, ev.action, ev.user_id,
                        json.dumps(ev.metadata, default=str), ev.created_at,
                    ),
                )
            self.db.commit()
        except Exception:
            logger.warning("EventWriter: flush failed for %d events", len(batch), exc_info=True)
            try:
                self.db.rollback()
            except Exception:
                logger.debug("EventWriter: rollback failed", exc_info=True)
            return 0
        return len(batch)

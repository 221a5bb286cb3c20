"""
Persistence Mirror

Operations emit persistence events into an outbox; a single background
worker drains the outbox into a sink (SQLite or the HTTP sync API).

The mirror is a best-effort cache, not a source of truth: ``emit`` never
blocks, sink failures are logged and dropped, nothing is retried.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

import db_writer
from config import MirrorConfig


logger = logging.getLogger(__name__)

MIRROR_OPERATIONS = (
    "mirror_households",
    "record_bid",
    "record_transfer",
    "record_log",
    "record_trend_point",
    "record_shock",
    "record_tokenization",
)


@dataclass
class MirrorEvent:
    operation: str
    payload: Dict[str, Any] = field(default_factory=dict)


class MirrorSink:
    """Interface every mirror backend implements. All calls are upserts or appends."""

    def mirror_households(self, households: List[Dict[str, Any]]) -> None:
        raise NotImplementedError

    def record_bid(self, task_id, household_id, amount, allocation_score, task_meta, equity_override) -> None:
        raise NotImplementedError

    def record_transfer(self, from_id, to_id, amount, ai_suggested, from_name=None, to_name=None) -> None:
        raise NotImplementedError

    def record_log(self, log_type, message, household_id=None) -> None:
        raise NotImplementedError

    def record_trend_point(self, cycle, poverty_rate, extreme_poverty_count, resilience_score, avg_poverty_index) -> None:
        raise NotImplementedError

    def record_shock(self, household_id, credit_loss, new_credits, new_shock_risk, new_poverty_index) -> None:
        raise NotImplementedError

    def record_tokenization(self, household_id, hours, credits_earned, new_credits, new_labor_hours,
                            new_poverty_index, new_credit_deficit) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class SqliteMirrorSink(MirrorSink):
    """Writes the mirror into a local SQLite database."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        db_writer.init_db(db_path)

    def mirror_households(self, households):
        db_writer.upsert_households(self.db_path, households)

    def record_bid(self, task_id, household_id, amount, allocation_score, task_meta, equity_override):
        db_writer.log_bid(self.db_path, task_id, household_id, amount, allocation_score, task_meta, equity_override)

    def record_transfer(self, from_id, to_id, amount, ai_suggested, from_name=None, to_name=None):
        db_writer.log_transfer(self.db_path, from_id, to_id, amount, ai_suggested, from_name, to_name)

    def record_log(self, log_type, message, household_id=None):
        db_writer.log_system_event(self.db_path, log_type, message, household_id)

    def record_trend_point(self, cycle, poverty_rate, extreme_poverty_count, resilience_score, avg_poverty_index):
        db_writer.log_trend_point(self.db_path, cycle, poverty_rate, extreme_poverty_count, resilience_score, avg_poverty_index)

    def record_shock(self, household_id, credit_loss, new_credits, new_shock_risk, new_poverty_index):
        db_writer.update_household_fields(
            self.db_path,
            household_id,
            credits=new_credits,
            shock_exposure_risk=new_shock_risk,
            poverty_index=new_poverty_index,
        )

    def record_tokenization(self, household_id, hours, credits_earned, new_credits, new_labor_hours,
                            new_poverty_index, new_credit_deficit):
        db_writer.update_household_fields(
            self.db_path,
            household_id,
            credits=new_credits,
            labor_hours=new_labor_hours,
            poverty_index=new_poverty_index,
            credit_deficit_ratio=new_credit_deficit,
        )


class HttpMirrorSink(MirrorSink):
    """Posts mirror events to the REST sync API (camelCase JSON bodies)."""

    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout, headers={"Content-Type": "application/json"})

    def _post(self, endpoint: str, body: Dict[str, Any]) -> None:
        r = self.client.post(f"{self.base_url}{endpoint}", json=body)
        r.raise_for_status()

    def mirror_households(self, households):
        self._post("/households/bulk-sync", {
            "households": [
                {
                    "id": h["household_id"],
                    "name": h["name"],
                    "credits": h["credits"],
                    "povertyIndex": h["poverty_index"],
                    "laborHours": h["labor_hours"],
                    "centralityScore": h["centrality_score"],
                    "shockExposureRisk": h["shock_exposure_risk"],
                    "creditDeficitRatio": h["credit_deficit_ratio"],
                }
                for h in households
            ]
        })

    def record_bid(self, task_id, household_id, amount, allocation_score, task_meta, equity_override):
        self._post("/bids", {
            "taskId": task_id,
            "householdId": household_id,
            "amount": amount,
            "allocationScore": allocation_score,
            "taskTitle": task_meta.get("title"),
            "baseCreditRequirement": task_meta.get("base_credit_requirement"),
            "category": task_meta.get("category"),
            "householdName": task_meta.get("household_name"),
            "equityOverride": equity_override,
        })

    def record_transfer(self, from_id, to_id, amount, ai_suggested, from_name=None, to_name=None):
        self._post("/transfers", {
            "fromId": from_id,
            "toId": to_id,
            "amount": amount,
            "aiSuggested": ai_suggested,
            "fromName": from_name,
            "toName": to_name,
        })

    def record_log(self, log_type, message, household_id=None):
        body = {"type": log_type, "message": message}
        if household_id:
            body["householdId"] = household_id
        self._post("/logs", body)

    def record_trend_point(self, cycle, poverty_rate, extreme_poverty_count, resilience_score, avg_poverty_index):
        self._post("/trends", {
            "cycle": cycle,
            "povertyRate": poverty_rate,
            "extremePovertyCount": extreme_poverty_count,
            "resilienceScore": resilience_score,
            "avgPovertyIndex": avg_poverty_index,
        })

    def record_shock(self, household_id, credit_loss, new_credits, new_shock_risk, new_poverty_index):
        self._post("/shock", {
            "householdId": household_id,
            "creditLoss": credit_loss,
            "newCredits": new_credits,
            "newShockRisk": new_shock_risk,
            "newPovertyIndex": new_poverty_index,
        })

    def record_tokenization(self, household_id, hours, credits_earned, new_credits, new_labor_hours,
                            new_poverty_index, new_credit_deficit):
        self._post("/tokenize", {
            "householdId": household_id,
            "hours": hours,
            "creditsEarned": credits_earned,
            "newCredits": new_credits,
            "newLaborHours": new_labor_hours,
            "newPovertyIndex": new_poverty_index,
            "newCreditDeficit": new_credit_deficit,
        })

    def close(self):
        self.client.close()


class MirrorOutbox:
    """
    Bounded queue of persistence events drained by one daemon thread.

    Until ``start`` is called events only accumulate; ``flush`` then drains
    them on the calling thread, which keeps tests deterministic.
    """

    def __init__(self, sink: MirrorSink, capacity: int = 1000):
        self.sink = sink
        self._queue: "queue.Queue[MirrorEvent]" = queue.Queue(maxsize=capacity)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.dropped = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending(self) -> int:
        return self._queue.unfinished_tasks

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="mirror-worker", daemon=True)
        self._thread.start()
        logger.info("Mirror worker started (%s)", type(self.sink).__name__)

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.sink.close()
        logger.info("Mirror worker stopped")

    def emit(self, operation: str, **payload: Any) -> None:
        """Queue an event without waiting; a full outbox drops the event."""
        if operation not in MIRROR_OPERATIONS:
            raise ValueError(f"unknown mirror operation {operation!r}")
        try:
            self._queue.put_nowait(MirrorEvent(operation, payload))
        except queue.Full:
            self.dropped += 1
            logger.warning("Mirror outbox full, dropped %s", operation)

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until every queued event has been handled. Returns False on timeout."""
        if not self.is_running:
            while True:
                try:
                    event = self._queue.get_nowait()
                except queue.Empty:
                    return True
                self._handle(event)

        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def _run(self) -> None:
        while not self._stop_event.is_set() or not self._queue.empty():
            try:
                event = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self._handle(event)

    def _handle(self, event: MirrorEvent) -> None:
        try:
            getattr(self.sink, event.operation)(**event.payload)
        except Exception as e:
            self.failed += 1
            logger.warning("Mirror %s failed: %s", event.operation, e)
        finally:
            self._queue.task_done()


def build_mirror(config: MirrorConfig) -> Optional[MirrorOutbox]:
    """Create (but do not start) the outbox for the configured backend."""
    if config.backend == "sqlite":
        sink: MirrorSink = SqliteMirrorSink(config.db_path)
    elif config.backend == "http":
        sink = HttpMirrorSink(config.api_base_url, timeout=config.http_timeout)
    else:
        return None
    return MirrorOutbox(sink, capacity=config.outbox_capacity)

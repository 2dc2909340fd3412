from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from core.logging_setup import ensure_logger
from core.settings import SYNC, SyncSettings
from core.sync_status import (
    COUNTED_TRIGGERS,
    DISCARDABLE,
    SUBMITTING_TRIGGERS,
    FailureKind,
    SyncStatus,
    SyncTrigger,
    next_status,
)
from datetime_utils import seconds_from_now, utc_now
from services.connectivity import ConnectivitySignal
from services.merge import merge_records, record_timestamp
from services.pending_ops_queue import PendingOpsQueue
from services.remote import (
    ConflictFailure,
    Outcome,
    RemoteDataStore,
    Success,
    TransientFailure,
    ValidationFailure,
)


StatusListener = Callable[[str, Optional[SyncStatus], Optional[SyncStatus]], None]


class ResolutionChoice(str, Enum):
    KEEP_LOCAL = "local"
    KEEP_REMOTE = "remote"
    MERGED = "merged"


class Reconciler:
    """Owns every status change of the entries in a :class:`PendingOpsQueue`.

    Transition methods return ``True`` when the transition was applied and
    ``False`` when it was rejected; nothing raises past this class. Remote
    outcomes, timeouts and remote exceptions all end up as status changes.
    """

    def __init__(
        self,
        queue: PendingOpsQueue,
        remote: RemoteDataStore,
        *,
        settings: SyncSettings = SYNC,
        connectivity: Optional[ConnectivitySignal] = None,
        store=None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.queue = queue
        self.remote = remote
        self.settings = settings
        self.store = store
        self.logger = logger or ensure_logger()
        self._sleep = sleep
        self._listeners: List[StatusListener] = []
        self._cycles: Dict[str, int] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._removals: Dict[str, asyncio.TimerHandle] = {}
        self._flush_task: Optional[asyncio.Task] = None
        self._flush_again = False
        self.connectivity: Optional[ConnectivitySignal] = None
        self._unsubscribe_connectivity: Optional[Callable[[], None]] = None
        if connectivity is not None:
            self.attach(connectivity)

    # ------------------------------------------------------------------
    # Wiring
    def attach(self, connectivity: ConnectivitySignal) -> None:
        self.detach()
        self.connectivity = connectivity
        self._unsubscribe_connectivity = connectivity.subscribe(self._on_connectivity_change)

    def detach(self) -> None:
        if self._unsubscribe_connectivity:
            self._unsubscribe_connectivity()
        self._unsubscribe_connectivity = None
        self.connectivity = None

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def load(self) -> int:
        """Restore a persisted queue. Returns the number of entries restored."""
        if self.store is None:
            return 0
        restored = self.store.restore_into(self.queue)
        self.logger.info("Restored %s pending operations", restored)
        return restored

    @property
    def can_submit(self) -> bool:
        return self.connectivity is None or self.connectivity.ready

    # ------------------------------------------------------------------
    # Local mutations
    def record(self, kind: str, payload: dict, collection: str = "records") -> str:
        """Queue an optimistic write.

        It is submitted right away only when an attached connectivity signal
        is ready. Without a signal the caller decides when to :meth:`dispatch`.
        """
        self._make_room()
        correlation_id = self.queue.enqueue(kind, payload, collection=collection)
        self.logger.info("Queued %s on %s as %s", kind, collection, correlation_id)
        self._emit(correlation_id, None, SyncStatus.PENDING)
        self._persist()
        if self.connectivity is not None and self.connectivity.ready and _has_running_loop():
            self._spawn(correlation_id, self.dispatch(correlation_id))
        return correlation_id

    # ------------------------------------------------------------------
    # Transition functions
    def mark_dispatched(self, correlation_id: str) -> bool:
        return self._transition(correlation_id, SyncTrigger.DISPATCH)

    def apply_outcome(
        self,
        correlation_id: str,
        outcome: Outcome,
        *,
        cycle: Optional[int] = None,
    ) -> bool:
        if cycle is not None and cycle != self._cycles.get(correlation_id):
            self.logger.info("Ignoring stale response for %s", correlation_id)
            return False

        match outcome:
            case Success():
                applied = self._transition(
                    correlation_id,
                    SyncTrigger.SUCCEED,
                    last_error=None,
                    failure_kind=None,
                    remote_record=None,
                    next_retry_at=None,
                )
                if applied:
                    self._schedule_removal(correlation_id)
                return applied
            case TransientFailure(reason=reason):
                return self._transition(
                    correlation_id,
                    SyncTrigger.FAIL_TRANSIENT,
                    last_error=reason,
                    failure_kind=FailureKind.TRANSIENT,
                )
            case ValidationFailure(reason=reason):
                return self._transition(
                    correlation_id,
                    SyncTrigger.FAIL_VALIDATION,
                    last_error=reason,
                    failure_kind=FailureKind.VALIDATION,
                    next_retry_at=None,
                )
            case ConflictFailure(remote_record=remote_record, reason=reason):
                return self._transition(
                    correlation_id,
                    SyncTrigger.FAIL_CONFLICT,
                    last_error=reason,
                    failure_kind=FailureKind.CONFLICT,
                    remote_record=remote_record,
                    next_retry_at=None,
                )
        self.logger.warning("Unknown outcome %r for %s", outcome, correlation_id)
        return False

    def mark_connectivity_lost(self, correlation_id: str) -> bool:
        applied = self._transition(correlation_id, SyncTrigger.CONNECTIVITY_LOST, next_retry_at=None)
        if not applied:
            return False
        task = self._inflight.pop(correlation_id, None)
        if task is not None and task is not _current_task():
            task.cancel()
        return True

    def connectivity_lost(self) -> int:
        moved = 0
        for entry in self.queue.list_by_status(SyncStatus.SYNCING):
            if self.mark_connectivity_lost(entry.correlation_id):
                moved += 1
        if moved:
            self.logger.warning("Connectivity lost, %s in-flight operations back to pending", moved)
        return moved

    # ------------------------------------------------------------------
    # User entry points
    def retry(self, correlation_id: str) -> bool:
        """User-initiated retry of a failed write. Starts a new submission cycle."""
        entry = self.queue.get(correlation_id)
        if entry is None or entry.status is not SyncStatus.ERROR:
            return False
        if entry.failure_kind is FailureKind.VALIDATION:
            self.logger.info("Retry refused for %s: payload needs an edit", correlation_id)
            return False
        if not self._ready_to_submit(correlation_id):
            return False
        if not self._transition(correlation_id, SyncTrigger.RETRY, restart=True):
            return False
        self._spawn(correlation_id, self._run_submission(correlation_id))
        return True

    def amend(self, correlation_id: str, payload: dict) -> bool:
        """Replace the payload of a failed write and submit it again."""
        entry = self.queue.get(correlation_id)
        if entry is None or entry.status is not SyncStatus.ERROR:
            return False
        if not self._ready_to_submit(correlation_id):
            return False
        if not self._transition(
            correlation_id,
            SyncTrigger.AMEND,
            restart=True,
            payload=dict(payload),
            last_error=None,
            failure_kind=None,
        ):
            return False
        self._spawn(correlation_id, self._run_submission(correlation_id))
        return True

    def resolve(
        self,
        correlation_id: str,
        choice: ResolutionChoice | str,
        payload: Optional[dict] = None,
    ) -> bool:
        """Settle a conflict and resubmit the chosen payload on the same id."""
        entry = self.queue.get(correlation_id)
        if entry is None or entry.status is not SyncStatus.CONFLICT:
            return False
        try:
            choice = ResolutionChoice(choice)
        except ValueError:
            self.logger.warning("Unknown resolution %r for %s", choice, correlation_id)
            return False

        if choice is ResolutionChoice.KEEP_LOCAL:
            resolved = entry.payload
        elif choice is ResolutionChoice.KEEP_REMOTE:
            resolved = entry.remote_record
        elif payload is not None:
            resolved = payload
        elif entry.remote_record is not None:
            resolved = merge_records(
                entry.payload,
                entry.remote_record,
                local_time=entry.created_at,
                remote_time=record_timestamp(entry.remote_record),
            )
        else:
            resolved = None
        if resolved is None:
            self.logger.info("Resolution %s for %s has no payload", choice.value, correlation_id)
            return False

        if not self._ready_to_submit(correlation_id):
            return False
        if not self._transition(
            correlation_id,
            SyncTrigger.RESOLVE,
            restart=True,
            payload=dict(resolved),
            remote_record=None,
            last_error=None,
            failure_kind=None,
        ):
            return False
        self._spawn(correlation_id, self._run_submission(correlation_id))
        return True

    def discard(self, correlation_id: str) -> bool:
        entry = self.queue.get(correlation_id)
        if entry is None or entry.status not in DISCARDABLE:
            return False
        self._drop(correlation_id, entry.status)
        self.logger.info("Discarded %s (%s)", correlation_id, entry.status.value)
        return True

    def cancel(self, correlation_id: str) -> bool:
        """Drop a write that was never sent."""
        entry = self.queue.get(correlation_id)
        if entry is None or entry.status is not SyncStatus.PENDING:
            return False
        self._drop(correlation_id, entry.status)
        self.logger.info("Cancelled %s before dispatch", correlation_id)
        return True

    def retry_all_failed(self) -> int:
        """Retry every transient failure, including those out of automatic attempts."""
        retried = 0
        for entry in self.queue.list_by_status(SyncStatus.ERROR):
            if entry.failure_kind is not FailureKind.TRANSIENT:
                continue
            if self.retry(entry.correlation_id):
                retried += 1
        if retried:
            self.logger.info("Retrying %s failed operations", retried)
        return retried

    def clear_synced(self) -> int:
        """Remove every confirmed entry without waiting for its grace period."""
        removed = 0
        for entry in self.queue.list_by_status(SyncStatus.SYNCED):
            self._drop(entry.correlation_id, SyncStatus.SYNCED)
            removed += 1
        return removed

    # ------------------------------------------------------------------
    # Submission
    async def dispatch(self, correlation_id: str) -> Optional[SyncStatus]:
        """Send a pending write and follow it until it settles.

        Returns the resulting status, or ``None`` if the entry could not be
        dispatched or is gone.
        """
        if not self.can_submit:
            return None
        if not self.mark_dispatched(correlation_id):
            return None
        return await self._run_submission(correlation_id)

    async def flush(self) -> int:
        """Submit every pending write, plus failed ones with retries left."""
        self.purge_synced()
        if not self.can_submit:
            return 0
        started: List[asyncio.Task] = []
        for entry in self.queue.list_by_status(SyncStatus.PENDING):
            if entry.correlation_id in self._inflight:
                continue
            task = self._spawn(entry.correlation_id, self.dispatch(entry.correlation_id))
            if task is not None:
                started.append(task)
        for entry in self.queue.list_by_status(SyncStatus.ERROR):
            if entry.correlation_id in self._inflight or not self._auto_retry_allowed(entry):
                continue
            if self._transition(entry.correlation_id, SyncTrigger.RETRY, next_retry_at=None):
                task = self._spawn(entry.correlation_id, self._run_submission(entry.correlation_id))
                if task is not None:
                    started.append(task)
        if started:
            self.logger.info("Flushing %s operations", len(started))
            await asyncio.gather(*started, return_exceptions=True)
        return len(started)

    async def wait_idle(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    async def aclose(self) -> None:
        self.detach()
        for handle in self._removals.values():
            handle.cancel()
        self._removals.clear()
        tasks = list(self._inflight.values())
        if self._flush_task is not None:
            tasks.append(self._flush_task)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        self._flush_task = None
        self._flush_again = False

    async def _run_submission(self, correlation_id: str) -> Optional[SyncStatus]:
        while True:
            status = await self._submit_once(correlation_id)
            if status is not SyncStatus.ERROR:
                return status
            entry = self.queue.get(correlation_id)
            if entry is None or not self._auto_retry_allowed(entry):
                return status

            delay = self.settings.backoff_delay(entry.attempt)
            cycle = self._cycles.get(correlation_id)
            self.queue.update(correlation_id, next_retry_at=seconds_from_now(delay))
            self.logger.info(
                "Retrying %s in %.1fs (attempt %s of %s)",
                correlation_id,
                delay,
                entry.attempt + 1,
                self.settings.max_attempts,
            )
            await self._sleep(delay)

            # discarded, retried by the user or otherwise moved on while waiting
            if cycle != self._cycles.get(correlation_id) or not self.can_submit:
                current = self.queue.get(correlation_id)
                return current.status if current else None
            if not self._transition(correlation_id, SyncTrigger.RETRY, next_retry_at=None):
                current = self.queue.get(correlation_id)
                return current.status if current else None

    async def _submit_once(self, correlation_id: str) -> Optional[SyncStatus]:
        entry = self.queue.get(correlation_id)
        if entry is None or entry.status is not SyncStatus.SYNCING:
            return entry.status if entry else None
        cycle = self._cycles.get(correlation_id)
        timeout = self.settings.submit_timeout_sec
        try:
            outcome = await asyncio.wait_for(
                self.remote.submit(entry.kind, entry.collection, entry.payload, correlation_id),
                timeout=timeout if timeout and timeout > 0 else None,
            )
        except asyncio.TimeoutError:
            self.logger.warning("Submit of %s timed out after %ss", correlation_id, timeout)
            outcome = TransientFailure(reason=f"no response within {timeout:g}s")
        except Exception as exc:
            self.logger.exception("Submit of %s crashed", correlation_id)
            outcome = TransientFailure(reason=str(exc) or exc.__class__.__name__)

        if not isinstance(outcome, (Success, TransientFailure, ConflictFailure, ValidationFailure)):
            self.logger.warning("Unexpected response %r for %s", outcome, correlation_id)
            outcome = TransientFailure(reason="unexpected response from server")
        if isinstance(outcome, (TransientFailure, ConflictFailure, ValidationFailure)):
            self.logger.warning("Submit of %s failed: %s", correlation_id, outcome.reason)

        self.apply_outcome(correlation_id, outcome, cycle=cycle)
        current = self.queue.get(correlation_id)
        return current.status if current else None

    # ------------------------------------------------------------------
    # Housekeeping
    def purge_synced(self) -> int:
        """Remove confirmed entries whose grace period is over."""
        removed = 0
        grace = self.settings.grace_period_sec
        now = utc_now()
        for entry in self.queue.list_by_status(SyncStatus.SYNCED):
            if (now - entry.updated_at).total_seconds() >= grace:
                self._drop(entry.correlation_id, SyncStatus.SYNCED)
                removed += 1
        return removed

    def status(self) -> dict:
        return {
            "queueSize": self.queue.count(),
            "counts": self.queue.counts(),
            "inFlight": len(self._inflight),
            "online": self.can_submit,
        }

    # ------------------------------------------------------------------
    # Internals
    def _transition(
        self,
        correlation_id: str,
        trigger: SyncTrigger,
        *,
        restart: bool = False,
        **changes,
    ) -> bool:
        entry = self.queue.get(correlation_id)
        if entry is None:
            self.logger.debug("%s: %s ignored, no such operation", correlation_id, trigger.value)
            return False
        target = next_status(entry.status, trigger)
        if target is None:
            self.logger.debug(
                "%s: %s rejected in state %s", correlation_id, trigger.value, entry.status.value
            )
            return False

        if restart:
            changes["attempt"] = 1
        elif trigger in COUNTED_TRIGGERS:
            changes["attempt"] = entry.attempt + 1
        if trigger in SUBMITTING_TRIGGERS or trigger is SyncTrigger.CONNECTIVITY_LOST:
            self._cycles[correlation_id] = self._cycles.get(correlation_id, 0) + 1

        self.queue.update(correlation_id, status=target, **changes)
        self.logger.debug("%s: %s -> %s", correlation_id, entry.status.value, target.value)
        self._emit(correlation_id, entry.status, target)
        self._persist()
        return True

    def _drop(self, correlation_id: str, previous: SyncStatus) -> None:
        handle = self._removals.pop(correlation_id, None)
        if handle is not None:
            handle.cancel()
        self._cycles.pop(correlation_id, None)
        self.queue.remove(correlation_id)
        self._emit(correlation_id, previous, None)
        self._persist()

    def _make_room(self) -> None:
        if not self.queue.is_full():
            return
        synced = self.queue.list_by_status(SyncStatus.SYNCED)
        if synced:
            self.logger.info("Queue full, evicting confirmed %s", synced[0].correlation_id)
            self._drop(synced[0].correlation_id, SyncStatus.SYNCED)

    def _schedule_removal(self, correlation_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # swept later by purge_synced()
            return
        previous = self._removals.pop(correlation_id, None)
        if previous is not None:
            previous.cancel()
        cycle = self._cycles.get(correlation_id)
        self._removals[correlation_id] = loop.call_later(
            max(self.settings.grace_period_sec, 0.0),
            self._expire,
            correlation_id,
            cycle,
        )

    def _expire(self, correlation_id: str, cycle: Optional[int]) -> None:
        self._removals.pop(correlation_id, None)
        entry = self.queue.get(correlation_id)
        if entry is None or entry.status is not SyncStatus.SYNCED:
            return
        if cycle != self._cycles.get(correlation_id):
            return
        self._drop(correlation_id, SyncStatus.SYNCED)

    def _auto_retry_allowed(self, entry) -> bool:
        return (
            self.settings.auto_retry
            and entry.status is SyncStatus.ERROR
            and entry.failure_kind is FailureKind.TRANSIENT
            and entry.attempt < self.settings.max_attempts
            and self.can_submit
        )

    def _ready_to_submit(self, correlation_id: str) -> bool:
        if not self.can_submit:
            self.logger.info("Still offline, %s stays queued", correlation_id)
            return False
        if not _has_running_loop():
            self.logger.warning("No running event loop to submit %s", correlation_id)
            return False
        return True

    def _spawn(self, correlation_id: str, coro) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return None
        task = loop.create_task(coro)
        self._inflight[correlation_id] = task
        task.add_done_callback(lambda t, cid=correlation_id: self._forget(cid, t))
        return task

    def _forget(self, correlation_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(correlation_id) is task:
            del self._inflight[correlation_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("Sync task for %s failed: %s", correlation_id, exc)

    def _on_connectivity_change(self, ready: bool) -> None:
        if not ready:
            self.connectivity_lost()
            return
        if not _has_running_loop():
            return
        if self._flush_task is not None and not self._flush_task.done():
            # the running flush may be stuck behind a backoff sleep
            self._flush_again = True
            return
        self._flush_task = asyncio.get_running_loop().create_task(self._flush_until_settled())

    async def _flush_until_settled(self) -> None:
        while True:
            self._flush_again = False
            await self.flush()
            if not self._flush_again or not self.can_submit:
                return

    def _emit(
        self,
        correlation_id: str,
        old: Optional[SyncStatus],
        new: Optional[SyncStatus],
    ) -> None:
        for listener in list(self._listeners):
            try:
                listener(correlation_id, old, new)
            except Exception:
                self.logger.exception("Status listener failed for %s", correlation_id)

    def _persist(self) -> None:
        if self.store is None or not self.settings.persist_queue:
            return
        try:
            self.store.save(self.queue)
        except Exception:
            self.logger.exception("Failed to persist pending operations")


def _has_running_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


__all__ = ["Reconciler", "ResolutionChoice", "StatusListener"]

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from conftest import FakeRemote
from core.settings import SyncSettings
from core.sync_status import FailureKind, SyncStatus
from models import PendingOp
from services.pending_ops_queue import PendingOpsQueue
from services.reconciler import Reconciler
from storage.queue_store import QueueStore


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)

    def factory():
        return Session(engine)

    return factory


def test_save_and_load_keeps_order_and_fields(session_factory):
    queue = PendingOpsQueue()
    first = queue.enqueue("create", {"weight": 350}, collection="weight_records")
    second = queue.enqueue("update", {"liters": 12}, collection="milk_records")
    queue.update(
        second,
        status=SyncStatus.CONFLICT,
        attempt=1,
        last_error="changed elsewhere",
        failure_kind=FailureKind.CONFLICT,
        remote_record={"liters": 14},
    )

    store = QueueStore(session_factory)
    assert store.save(queue) == 2
    assert store.count() == 2

    loaded = store.load()
    assert [op.correlation_id for op in loaded] == [first, second]
    conflict = loaded[1]
    assert conflict.status is SyncStatus.CONFLICT
    assert conflict.failure_kind is FailureKind.CONFLICT
    assert conflict.remote_record == {"liters": 14}
    assert conflict.payload == {"liters": 12}
    assert conflict.created_at.tzinfo is not None


def test_in_flight_rows_come_back_pending(session_factory):
    queue = PendingOpsQueue()
    cid = queue.enqueue("update", {"weight": 400})
    queue.update(cid, status=SyncStatus.SYNCING, attempt=2)
    store = QueueStore(session_factory)
    store.save(queue)

    fresh = PendingOpsQueue()
    assert store.restore_into(fresh) == 1
    entry = fresh.get(cid)
    assert entry.status is SyncStatus.PENDING
    assert entry.attempt == 2
    assert store.restore_into(fresh) == 0


def test_unreadable_rows_are_skipped(session_factory):
    with session_factory() as session:
        session.add(PendingOp(correlation_id="ok", kind="create", collection="x", payload="{}"))
        session.add(PendingOp(correlation_id="bad", seq=1, kind="create", collection="x", payload="{oops"))
        session.add(
            PendingOp(correlation_id="weird", seq=2, kind="create", collection="x", payload="{}", status="lost")
        )
        session.commit()

    loaded = QueueStore(session_factory).load()
    assert [op.correlation_id for op in loaded] == ["ok"]


def test_save_replaces_previous_snapshot(session_factory):
    queue = PendingOpsQueue()
    cid = queue.enqueue("create", {})
    store = QueueStore(session_factory)
    store.save(queue)
    queue.remove(cid)
    store.save(queue)
    assert store.count() == 0
    store.clear()
    assert store.load() == []


def test_reconciler_persists_every_transition(session_factory, test_logger):
    store = QueueStore(session_factory)
    queue = PendingOpsQueue()
    reconciler = Reconciler(
        queue,
        FakeRemote(),
        settings=SyncSettings(persist_queue=True),
        store=store,
        logger=test_logger,
    )
    cid = reconciler.record("create", {"weight": 350})
    assert [op.status for op in store.load()] == [SyncStatus.PENDING]

    reconciler.mark_dispatched(cid)
    with session_factory() as session:
        assert session.get(PendingOp, cid).status == "syncing"

    restored = Reconciler(PendingOpsQueue(), FakeRemote(), store=store, logger=test_logger)
    assert restored.load() == 1
    assert restored.queue.get(cid).status is SyncStatus.PENDING

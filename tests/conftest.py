import asyncio
import logging

import pytest

from core.settings import SyncSettings
from services.pending_ops_queue import PendingOpsQueue
from services.reconciler import Reconciler
from services.remote import Success


class FakeRemote:
    """Scripted stand-in for the remote data store.

    Each submit pops the next scripted item: an outcome is returned, an
    exception is raised, an ``asyncio.Event`` is awaited before succeeding.
    With nothing scripted the payload is confirmed as-is.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.calls = []

    async def submit(self, kind, collection, payload, correlation_id):
        self.calls.append((kind, collection, dict(payload), correlation_id))
        if not self.script:
            return Success(confirmed_record=dict(payload))
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, asyncio.Event):
            await step.wait()
            return Success(confirmed_record=dict(payload))
        return step


FAST = SyncSettings(
    grace_period_sec=0.01,
    max_attempts=3,
    retry_delays_sec=(0.0,),
    submit_timeout_sec=1.0,
    max_queue_size=50,
    persist_queue=False,
)


async def settle(reconciler, rounds=5):
    for _ in range(rounds):
        await asyncio.sleep(0)
    await reconciler.wait_idle()


@pytest.fixture()
def queue():
    return PendingOpsQueue(max_size=FAST.max_queue_size)


@pytest.fixture()
def test_logger():
    return logging.getLogger("herdsync.tests")


@pytest.fixture()
def make_reconciler(queue, test_logger):
    def factory(remote=None, **kwargs):
        kwargs.setdefault("settings", FAST)
        return Reconciler(queue, remote or FakeRemote(), logger=test_logger, **kwargs)

    return factory

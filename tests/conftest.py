import asyncio
import os
from datetime import datetime, timedelta

# Settings are read at import time
os.environ["ALERT_EVALUATION_INTERVAL_SECONDS"] = "0"
os.environ["RAIL_SIMULATED_DELAY_SECONDS"] = "0"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./payouts_test.db")

import pytest

from payouts.database import build_engine, build_session_factory, create_db_and_tables
from payouts.locks import ScheduleLocks
from payouts.payment_rail_service import PaymentRail, RailResult
from payouts.schedule_service import ScheduleService
from payouts.transaction_service import TransactionProcessor

NOW = datetime(2024, 6, 1, 12, 0, 0)


class Clock:
    """Settable clock handed to the processor."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class ScriptedRail(PaymentRail):
    """Answers with queued results, confirming when the queue is empty.

    ``hold()`` makes every confirmation wait until ``release()``.
    """

    def __init__(self):
        self.results = []
        self.requests = []
        self.gate = asyncio.Event()
        self.gate.set()

    def hold(self):
        self.gate.clear()

    def release(self):
        self.gate.set()

    async def confirm(self, request):
        self.requests.append(request)
        await self.gate.wait()
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return RailResult.confirmed()


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'payouts.db'}")
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def locks():
    return ScheduleLocks()


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def rail():
    return ScriptedRail()


@pytest.fixture
async def processor(session_factory, rail, locks, clock):
    processor = TransactionProcessor(
        session_factory=session_factory,
        rail=rail,
        timeout_seconds=5,
        locks=locks,
        clock=clock,
    )
    yield processor
    await processor.shutdown()


@pytest.fixture
def make_schedule(db):
    async def _make(now=NOW, **overrides):
        data = {
            "entity_id": "pharmacy-0",
            "entity_name": "HealthPlus Pharmacy",
            "entity_type": "pharmacy",
            "schedule_type": "collection",
            "frequency": "weekly",
            "next_due_date": now + timedelta(days=7),
            "pending_amount": 1000.0,
            "total_amount": 1000.0,
            "payment_method": "bank_transfer",
            "minimum_amount": 1000.0,
        }
        data.update(overrides)
        return await ScheduleService.create(db, data, now=now)

    return _make

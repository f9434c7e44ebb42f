import pytest

from predictionjack.engine import intents
from predictionjack.engine.database import Database
from predictionjack.engine.orchestrator import IntentStatus, PendingIntent

from conftest import ACCOUNT


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "data" / "test.db")


@pytest.mark.asyncio
async def test_intent_is_upserted(db_path):
    db = Database(db_path)
    await db.init_schema()
    pending = PendingIntent(intents.hit(ACCOUNT))
    await db.record_intent(pending)

    pending.hash = "0xabc"
    pending.transition(IntentStatus.SUBMITTED)
    await db.record_intent(pending)

    rows = await db.list_intents()
    assert len(rows) == 1
    assert rows[0]["id"] == pending.id
    assert rows[0]["status"] == "submitted"
    assert rows[0]["tx_hash"] == "0xabc"
    assert rows[0]["kind"] == "hit"


@pytest.mark.asyncio
async def test_list_intents_by_status(db_path):
    db = Database(db_path)
    await db.init_schema()
    rejected = PendingIntent(intents.stand(ACCOUNT))
    rejected.transition(IntentStatus.FAILED)
    rejected.user_rejected = True
    await db.record_intent(rejected)
    await db.record_intent(PendingIntent(intents.hit(ACCOUNT)))

    failed = await db.list_intents(status="failed")
    assert [r["id"] for r in failed] == [rejected.id]
    assert failed[0]["user_rejected"] == 1


@pytest.mark.asyncio
async def test_read_failures(db_path):
    db = Database(db_path)
    await db.init_schema()
    await db.record_failure(("game", ACCOUNT), 1, "timeout")
    await db.record_failure(("game", ACCOUNT), 2, "timeout")

    rows = await db.list_failures()
    assert [r["consecutive"] for r in rows] == [2, 1]
    assert ACCOUNT in rows[0]["snapshot_key"]


@pytest.mark.asyncio
async def test_reset_clears_tables(db_path):
    db = Database(db_path)
    await db.init_schema()
    await db.record_failure("fees", 1, "x")
    await db.reset()
    assert await db.list_failures() == []

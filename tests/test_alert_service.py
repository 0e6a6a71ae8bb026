from datetime import timedelta

import pytest

from payouts.alert_service import AlertEvaluationLoop, AlertService, run_evaluation
from payouts.exceptions import InvalidStateError, NotFoundError
from payouts.schedule_service import ScheduleService

from conftest import NOW


async def test_overdue_alert_escalates_in_place(make_schedule, db, locks):
    schedule = await make_schedule(
        next_due_date=NOW - timedelta(days=2),
        alert_settings={"escalation_days": 3},
    )

    changes = await AlertService.evaluate(db, now=NOW, locks=locks)
    assert len(changes) == 1
    first = changes[0].alert
    assert changes[0].action == "created"
    assert first.alert_type == "collection_overdue"
    assert first.severity == "high"
    assert first.days_past_due == 2
    assert first.title == "Commission Collection Overdue"
    assert first.message == (
        "Commission collection from HealthPlus Pharmacy is 2 days overdue. Amount: EGP 1,000.00"
    )
    assert first.alert_metadata["scheduleId"] == schedule.id
    assert first.alert_metadata["escalated"] is False

    changes = await AlertService.evaluate(db, now=NOW + timedelta(days=3), locks=locks)
    assert [change.action for change in changes] == ["updated"]

    alerts = await AlertService.list(db)
    assert len(alerts) == 1
    assert alerts[0].id == first.id
    assert alerts[0].severity == "critical"
    assert alerts[0].days_past_due == 5
    assert alerts[0].alert_metadata["escalated"] is True


async def test_evaluate_is_idempotent(make_schedule, db, locks):
    await make_schedule(next_due_date=NOW - timedelta(days=1))
    await make_schedule(entity_id="pharmacy-1", next_due_date=NOW + timedelta(days=1))

    first = await AlertService.evaluate(db, now=NOW, locks=locks)
    assert len(first) == 2

    second = await AlertService.evaluate(db, now=NOW, locks=locks)
    assert second == []
    assert len(await AlertService.list(db)) == 2


async def test_due_soon_severity(make_schedule, db, locks):
    await make_schedule(
        entity_id="pharmacy-1",
        next_due_date=NOW + timedelta(hours=12),
        alert_settings={"alert_days_before": 2},
    )
    await make_schedule(
        entity_id="pharmacy-2",
        next_due_date=NOW + timedelta(days=2),
        alert_settings={"alert_days_before": 2},
    )
    await make_schedule(
        entity_id="pharmacy-3",
        next_due_date=NOW + timedelta(days=5),
        alert_settings={"alert_days_before": 2},
    )

    await AlertService.evaluate(db, now=NOW, locks=locks)
    alerts = {alert.entity_id: alert for alert in await AlertService.list(db)}

    assert set(alerts) == {"pharmacy-1", "pharmacy-2"}
    assert alerts["pharmacy-1"].alert_type == "collection_due"
    assert alerts["pharmacy-1"].severity == "medium"
    assert alerts["pharmacy-1"].title == "Commission Collection Due Tomorrow"
    assert alerts["pharmacy-2"].severity == "low"
    assert alerts["pharmacy-2"].message.endswith("is due in 2 days. Amount: EGP 1,000.00")


async def test_payout_alerts_use_payout_types(make_schedule, db, locks):
    await make_schedule(
        entity_id="doctor-1",
        entity_name="Dr. Sarah Mohamed",
        entity_type="doctor",
        schedule_type="payout",
        next_due_date=NOW - timedelta(days=4),
        alert_settings={"escalation_days": 1},
    )

    changes = await AlertService.evaluate(db, now=NOW, locks=locks)
    alert = changes[0].alert
    assert alert.alert_type == "payout_overdue"
    assert alert.severity == "critical"
    assert alert.message.startswith("Commission payout to Dr. Sarah Mohamed is 4 days overdue")


async def test_amount_threshold_alert(make_schedule, db, locks):
    await make_schedule(
        entity_id="vendor-0",
        entity_name="HealthTech Supplies",
        entity_type="vendor",
        pending_amount=2890.5,
        minimum_amount=1000.0,
    )

    changes = await AlertService.evaluate(db, now=NOW, locks=locks)
    assert len(changes) == 1
    alert = changes[0].alert
    assert alert.alert_type == "amount_threshold"
    assert alert.severity == "medium"
    assert alert.alert_metadata["threshold"] == 2000.0
    assert alert.alert_metadata["currentAmount"] == 2890.5
    assert "Consider early collection" in alert.message


async def test_threshold_not_raised_for_zero_pending(make_schedule, db, locks):
    await make_schedule(pending_amount=0.0, minimum_amount=0.0)
    assert await AlertService.evaluate(db, now=NOW, locks=locks) == []


async def test_disabled_and_paused_schedules_are_skipped(make_schedule, db, locks):
    await make_schedule(
        entity_id="pharmacy-1",
        next_due_date=NOW - timedelta(days=2),
        alert_settings={"enable_alerts": False},
    )
    paused = await make_schedule(entity_id="pharmacy-2", next_due_date=NOW - timedelta(days=2))
    await ScheduleService.set_status(db, paused.id, "paused", now=NOW, locks=locks)
    await make_schedule(
        entity_id="pharmacy-3",
        next_due_date=NOW - timedelta(days=2),
        alert_settings={"enable_overdue_alerts": False},
    )

    assert await AlertService.evaluate(db, now=NOW, locks=locks) == []


async def test_list_orders_by_severity_then_newest(make_schedule, db, locks):
    await make_schedule(entity_id="pharmacy-1", next_due_date=NOW + timedelta(days=2))
    await make_schedule(entity_id="pharmacy-2", next_due_date=NOW - timedelta(days=9))
    await AlertService.evaluate(db, now=NOW, locks=locks)
    await make_schedule(entity_id="pharmacy-3", next_due_date=NOW + timedelta(days=2))
    await AlertService.evaluate(db, now=NOW + timedelta(minutes=5), locks=locks)

    alerts = await AlertService.list(db)
    assert [(a.entity_id, a.severity) for a in alerts] == [
        ("pharmacy-2", "critical"),
        ("pharmacy-3", "low"),
        ("pharmacy-1", "low"),
    ]

    critical = await AlertService.list(db, severity="critical")
    assert [a.entity_id for a in critical] == ["pharmacy-2"]


async def test_mark_read_and_resolve(make_schedule, db, locks):
    await make_schedule(next_due_date=NOW - timedelta(days=1))
    alert = (await AlertService.evaluate(db, now=NOW, locks=locks))[0].alert

    assert await AlertService.mark_read(db, alert.id, now=NOW, locks=locks) is True
    assert await AlertService.mark_read(db, alert.id, now=NOW, locks=locks) is True
    assert [a.id for a in await AlertService.list(db, is_read=True)] == [alert.id]

    assert await AlertService.resolve(db, alert.id, now=NOW, locks=locks) is True
    resolved = await AlertService.get(db, alert.id)
    assert resolved.is_resolved is True
    assert resolved.resolved_at == NOW

    with pytest.raises(InvalidStateError):
        await AlertService.resolve(db, alert.id, now=NOW, locks=locks)
    with pytest.raises(NotFoundError):
        await AlertService.mark_read(db, 999, locks=locks)


async def test_resolved_alert_is_replaced_by_a_new_one(make_schedule, db, locks):
    await make_schedule(next_due_date=NOW - timedelta(days=1))
    alert = (await AlertService.evaluate(db, now=NOW, locks=locks))[0].alert
    await AlertService.resolve(db, alert.id, now=NOW, locks=locks)

    changes = await AlertService.evaluate(db, now=NOW + timedelta(hours=1), locks=locks)
    assert [change.action for change in changes] == ["created"]
    assert changes[0].alert.id != alert.id
    assert len(await AlertService.list(db, is_resolved=False)) == 1


async def test_run_evaluation_refreshes_status_first(make_schedule, db, locks):
    schedule = await make_schedule(next_due_date=NOW + timedelta(hours=1))

    changes = await run_evaluation(db, now=NOW + timedelta(days=1, hours=2), locks=locks)

    assert (await ScheduleService.get(db, schedule.id)).status == "overdue"
    assert [change.alert.alert_type for change in changes] == ["collection_overdue"]


async def test_evaluation_loop_run_once(make_schedule, session_factory, locks):
    await make_schedule(next_due_date=NOW - timedelta(days=1))
    loop = AlertEvaluationLoop(session_factory, interval_seconds=0, locks=locks)

    changes = await loop.run_once(now=NOW)
    assert len(changes) == 1

    loop.start()
    await loop.stop()


async def test_replacement_schedule_takes_over_entity_alert(make_schedule, db, locks):
    old = await make_schedule(next_due_date=NOW - timedelta(days=2))
    first = (await AlertService.evaluate(db, now=NOW, locks=locks))[0].alert
    await ScheduleService.set_status(db, old.id, "cancelled", now=NOW, locks=locks)
    new = await make_schedule(next_due_date=NOW - timedelta(days=5))

    changes = await AlertService.evaluate(db, now=NOW, locks=locks)
    assert [change.action for change in changes] == ["updated"]
    assert changes[0].alert.id == first.id
    assert changes[0].alert.schedule_id == new.id
    assert changes[0].alert.severity == "critical"

    assert await AlertService.evaluate(db, now=NOW, locks=locks) == []

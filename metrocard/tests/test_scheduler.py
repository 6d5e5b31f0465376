import asyncio

from metrocard.utils import scheduler
from metrocard.utils.scheduler import check_timeouts, find_overdue


class RecordingNotifier:
    def __init__(self, outcome=True):
        self.outcome = outcome
        self.calls = []

    async def __call__(self, user_id, text, action_ref):
        self.calls.append((user_id, text, action_ref))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _sweep(ledger, notify, threshold=210):
    return asyncio.run(check_timeouts(ledger, notify, threshold))


def test_single_reminder_after_timeout(ledger, clock, card_id):
    ledger.update_status(42, card_id, "in_station")
    clock.advance(minutes=211)
    notify = RecordingNotifier()

    assert _sweep(ledger, notify) == 1
    assert len(notify.calls) == 1
    user_id, text, action_ref = notify.calls[0]
    assert user_id == "42"
    assert "ICBC" in text and "3h 31m" in text
    assert action_ref == f"reminder_checkout_{card_id}"
    assert ledger.get_card(42, card_id).reminderSent is True

    assert _sweep(ledger, notify) == 0
    assert len(notify.calls) == 1


def test_no_reminder_before_threshold(ledger, clock, card_id):
    ledger.update_status(42, card_id, "in_station")
    clock.advance(minutes=209)
    notify = RecordingNotifier()
    assert _sweep(ledger, notify) == 0
    assert notify.calls == []


def test_threshold_is_inclusive_and_configurable(ledger, clock, card_id):
    ledger.update_status(42, card_id, "in_station")
    clock.advance(minutes=30)
    assert _sweep(ledger, RecordingNotifier(), threshold=30) == 1


def test_failed_delivery_is_retried(ledger, clock, card_id):
    ledger.update_status(42, card_id, "in_station")
    clock.advance(minutes=240)

    assert _sweep(ledger, RecordingNotifier(outcome=False)) == 0
    assert ledger.get_card(42, card_id).reminderSent is False

    assert _sweep(ledger, RecordingNotifier(outcome=RuntimeError("network down"))) == 0
    assert ledger.get_card(42, card_id).reminderSent is False

    assert _sweep(ledger, RecordingNotifier()) == 1
    assert ledger.get_card(42, card_id).reminderSent is True


def test_new_check_in_rearms_reminder(ledger, clock, card_id):
    ledger.update_status(42, card_id, "in_station")
    clock.advance(minutes=211)
    _sweep(ledger, RecordingNotifier())
    ledger.consume_coupon(42, card_id, "A")
    assert ledger.get_card(42, card_id).reminderSent is False

    ledger.update_status(42, card_id, "in_station")
    clock.advance(minutes=211)
    notify = RecordingNotifier()
    assert _sweep(ledger, notify) == 1


def test_checkout_during_delivery_is_not_flagged(ledger, clock, card_id):
    ledger.update_status(42, card_id, "in_station")
    clock.advance(minutes=211)

    async def notify(user_id, text, action_ref):
        ledger.update_status(42, card_id, "idle")
        return True

    asyncio.run(check_timeouts(ledger, notify, 210))
    card = ledger.get_card(42, card_id)
    assert card.status == "idle"
    assert card.reminderSent is False


def test_find_overdue_filters(ledger, clock):
    ledger.add_cards(1, ["idle", "reminded", "bad", "late"])
    ids = {c.name: c.id for c in ledger.get_cards(1)}
    for name in ("reminded", "bad", "late"):
        ledger.update_status(1, ids[name], "in_station")
    ledger.mark_reminder_sent(1, ids["reminded"])

    data = ledger.store.load()
    data["1"].cards[2].checkInTime = "yesterday-ish"
    ledger.store.save(data)

    clock.advance(hours=5)
    found = find_overdue(ledger.list_all_users_cards(), clock.now(), 210)
    assert [m["card_name"] for m in found] == ["late"]
    assert found[0]["elapsed_minutes"] == 300


def test_start_scheduler_registers_repeating_job(ledger):
    registered = {}

    class FakeJobQueue:
        def run_repeating(self, callback, interval, first, name):
            registered.update(callback=callback, interval=interval, first=first, name=name)
            return "job"

    class FakeApp:
        job_queue = FakeJobQueue()

    job = scheduler.start_scheduler(FakeApp(), ledger, RecordingNotifier(), interval_s=60, threshold_minutes=210)
    assert job == "job"
    assert registered["interval"] == 60
    assert registered["name"] == "checkout_reminders"
    # the job swallows and logs errors so the queue keeps running
    asyncio.run(registered["callback"](None))


def test_new_session_during_delivery_is_not_flagged(ledger, clock, card_id):
    ledger.update_status(42, card_id, "in_station")
    clock.advance(minutes=211)

    async def notify(user_id, text, action_ref):
        ledger.update_status(42, card_id, "idle")
        clock.advance(minutes=1)
        ledger.update_status(42, card_id, "in_station")
        return True

    assert asyncio.run(check_timeouts(ledger, notify, 210)) == 0
    card = ledger.get_card(42, card_id)
    assert card.status == "in_station"
    assert card.reminderSent is False

    clock.advance(minutes=210)
    assert _sweep(ledger, RecordingNotifier()) == 1


def test_mark_reminder_sent_matches_session(ledger, card_id):
    ledger.update_status(42, card_id, "in_station")
    started = ledger.get_card(42, card_id).checkInTime
    assert ledger.mark_reminder_sent(42, card_id, check_in_time="2000-01-01T00:00:00+00:00") is False
    assert ledger.mark_reminder_sent(42, card_id, check_in_time=started) is True

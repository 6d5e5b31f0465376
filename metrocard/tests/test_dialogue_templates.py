from datetime import datetime, timedelta, timezone

from metrocard.core.models import (
    BatchAddResult, Card, ConsumeResult, CouponBatch, Coupons, DailyUsage,
)
from metrocard.utils import dialogue_templates as dt
from metrocard.utils.time_utils import (
    day_key, humanize_minutes, minutes_since, month_key, parse_ts, to_iso,
)


def _card(a=10, b=5, used_a=False, used_b=False, status="idle") -> Card:
    return Card(id="1", name="ICBC",
                coupons=Coupons(A=a, B=[CouponBatch(monthKey="2024-05", count=b)]),
                dailyUsage=DailyUsage(A=used_a, B=used_b, date="2024-05-15"),
                status=status)


def test_status_emoji_and_text():
    assert (dt.status_emoji(_card(status="in_station")), dt.status_text(_card(status="in_station"))) == ("🚇", "in station")
    assert (dt.status_emoji(_card(used_a=True, used_b=True)), dt.status_text(_card(used_a=True, used_b=True))) == ("😴", "done for today")
    assert dt.status_text(_card(used_a=True)) == "used 50% off"
    assert dt.status_text(_card(used_b=True)) == "used ¥2 off"
    assert (dt.status_emoji(_card()), dt.status_text(_card())) == ("😃", "idle")


def test_coupon_emoji_levels():
    assert dt.coupon_emoji(_card(a=0, b=0)) == "🔴"
    assert dt.coupon_emoji(_card(a=1, b=1)) == "🟠"
    assert dt.coupon_emoji(_card(a=0, b=5)) == "🟡"
    assert dt.coupon_emoji(_card(a=1, b=5)) == "🟢"


def test_usable_types():
    assert dt.usable_types(_card()) == ["A", "B"]
    assert dt.usable_types(_card(used_a=True)) == ["B"]
    assert dt.usable_types(_card(b=0)) == ["A"]
    assert dt.usable_types(_card(a=0, used_b=True)) == []


def test_main_menu_text():
    assert "no cards yet" in dt.main_menu_text([])
    text = dt.main_menu_text([_card(a=9, b=4)])
    assert "😃 ICBC (A: 9 B: 4) 🟢 - idle" in text


def test_consume_and_batch_text():
    ok = ConsumeResult(True, "", coupon_type="B", remaining=4, batch="2024-05")
    assert dt.consume_text("ICBC", ok, auto=True) == "✅ Auto-used ¥2 off on ICBC (4 left)"
    failed = ConsumeResult(False, "Coupon A is exhausted.", reason="exhausted")
    assert dt.consume_text("ICBC", failed) == "Coupon A is exhausted."

    report = dt.batch_report(BatchAddResult(added=["CMB"], failed=[("ICBC", "duplicate_name")]))
    assert "✅ Added 1 card(s):\n• CMB" in report
    assert "• ICBC (already exists)" in report


def test_prompts_cover_every_input_failure():
    for key in ("empty_name", "name_too_long", "duplicate_name", "empty_input", "batch_limit_exceeded"):
        assert dt.prompt(key)


def test_time_helpers():
    now = datetime(2024, 5, 15, 11, 30, tzinfo=timezone.utc)
    assert day_key(now) == "2024-05-15"
    assert month_key(now) == "2024-05"
    assert minutes_since(to_iso(now - timedelta(minutes=90)), now) == 90
    assert minutes_since("2024-05-15T08:00:00.000Z", now) == 210
    assert minutes_since("2024-05-15T08:00:00", now) == 210  # naive read in the clock's zone
    assert minutes_since("garbage", now) is None
    assert parse_ts(None) is None
    assert humanize_minutes(45) == "45m"
    assert humanize_minutes(211) == "3h 31m"
    assert humanize_minutes(60 * 26) == "1d 2h"

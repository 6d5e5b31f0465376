"""
metrocard/utils/scheduler.py
----------------------------
Forgotten-checkout sweep: finds cards left in station past the timeout and
sends one reminder per check-in.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from metrocard.audit.logger import get_logger
from metrocard.core.ledger import Ledger
from metrocard.core.models import STATUS_IN_STATION, UserCards
from metrocard.utils.dialogue_templates import reminder_text
from metrocard.utils.time_utils import minutes_since

logger = get_logger(__name__)

CHECKOUT_TIMEOUT_MINUTES = 210
CHECK_INTERVAL_S = 60  # used by the job queue; public API doesn't sleep
REMINDER_ACTION_PREFIX = "reminder_checkout_"

# notify(user_id, text, action_ref) -> delivered?
Notifier = Callable[[str, str, str], Awaitable[bool]]


def find_overdue(entries: Iterable[UserCards], now: datetime,
                 threshold_minutes: int = CHECKOUT_TIMEOUT_MINUTES) -> List[Dict[str, Any]]:
    """Return one reminder dict per in-station card past the threshold that hasn't been reminded."""
    out: List[Dict[str, Any]] = []
    for entry in entries:
        for card in entry.cards:
            if card.status != STATUS_IN_STATION or card.reminderSent or not card.checkInTime:
                continue
            elapsed = minutes_since(card.checkInTime, now)
            if elapsed is None:
                logger.warning(f"Unreadable checkInTime {card.checkInTime!r} on card {card.id}")
                continue
            if elapsed >= threshold_minutes:
                out.append({
                    "type": "checkout_reminder",
                    "user_id": entry.user_id,
                    "card_id": card.id,
                    "card_name": card.name,
                    "check_in_time": card.checkInTime,
                    "elapsed_minutes": int(elapsed),
                    "text": reminder_text(card.name, elapsed),
                    "action_ref": f"{REMINDER_ACTION_PREFIX}{card.id}",
                })
    return out


async def check_timeouts(ledger: Ledger, notify: Notifier,
                         threshold_minutes: int = CHECKOUT_TIMEOUT_MINUTES,
                         now: Optional[datetime] = None) -> int:
    """Run one sweep. Returns how many reminders were delivered and flagged."""
    now = now or ledger.clock.now()
    sent = 0
    for msg in find_overdue(ledger.list_all_users_cards(), now, threshold_minutes):
        try:
            delivered = await notify(msg["user_id"], msg["text"], msg["action_ref"])
        except Exception as e:
            logger.error(f"Timeout reminder to user {msg['user_id']} failed: {e}")
            continue
        if not delivered:
            logger.warning(f"Timeout reminder to user {msg['user_id']} not delivered; will retry")
            continue
        if not ledger.mark_reminder_sent(msg["user_id"], msg["card_id"], True,
                                         check_in_time=msg["check_in_time"]):
            logger.info(f"Card {msg['card_name']} left station during delivery; not flagged")
            continue
        sent += 1
        logger.info(f"Timeout reminder sent for user {msg['user_id']}, card {msg['card_name']}")
    return sent


def start_scheduler(application: Any, ledger: Ledger, notify: Notifier,
                    interval_s: int = CHECK_INTERVAL_S,
                    threshold_minutes: int = CHECKOUT_TIMEOUT_MINUTES) -> Any:
    """Register the sweep on the bot application's job queue."""

    async def _sweep(context: Any) -> None:
        try:
            await check_timeouts(ledger, notify, threshold_minutes)
        except Exception:
            logger.exception("Timeout sweep failed; retrying next interval")

    job = application.job_queue.run_repeating(_sweep, interval=interval_s, first=interval_s,
                                              name="checkout_reminders")
    logger.info(f"Timeout reminder checker started (threshold: {threshold_minutes} min, every {interval_s}s)")
    return job

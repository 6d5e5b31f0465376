"""
metrocard/core/ledger.py
------------------------
Card ledger: coupon pools, monthly B refill, daily gating and travel status.

Every public operation loads the whole database, normalizes the user's record
for the current clock reading, applies its change and writes the whole
database back. Concurrent writers are last-writer-wins.
"""

from __future__ import annotations
import re
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from metrocard.audit.logger import get_logger
from metrocard.core.models import (
    ALREADY_USED_TODAY, BATCH_LIMIT_EXCEEDED, COUPON_A, COUPON_B, DUPLICATE_NAME,
    EMPTY_INPUT, EMPTY_NAME, EXHAUSTED, INITIAL_A_GRANT, INVALID_TYPE,
    LEGACY_STATUS_USED_TODAY, MAX_BATCH_SIZE, MAX_NAME_LENGTH, NAME_TOO_LONG,
    NOT_FOUND, STATUS_IDLE, STATUS_IN_STATION, STATUSES,
    BatchAddResult, Card, ConsumeResult, CouponBatch, Coupons, DailyUsage,
    Database, UserCards, UserData,
)
from metrocard.utils.store import JsonStore
from metrocard.utils.time_utils import Clock, SystemClock, day_key, month_key, to_iso

logger = get_logger(__name__)

_NAME_SEPARATORS = re.compile(r"[,，]")


# ---------- normalization ----------
def normalize_card(card: Card, now: datetime) -> bool:
    """Apply daily reset, monthly B refill/prune and status repair. Returns True if anything changed."""
    changed = False
    today = day_key(now)
    current = month_key(now)

    if card.dailyUsage.date != today:
        card.dailyUsage = DailyUsage(date=today)
        changed = True

    # exactly one B batch, for the current month; older months lapse
    batch = next((b for b in card.coupons.B if b.monthKey == current), None)
    if batch is None:
        batch = CouponBatch(monthKey=current)
    if card.coupons.B != [batch]:
        card.coupons.B = [batch]
        changed = True
    if batch.count < 0:
        batch.count = 0
        changed = True

    if card.coupons.A < 0:
        card.coupons.A = 0
        changed = True

    if card.status == LEGACY_STATUS_USED_TODAY or card.status not in STATUSES:
        card.status = STATUS_IDLE
        changed = True

    if card.status == STATUS_IDLE and card.reminderSent:
        card.reminderSent = False
        changed = True
    if card.status == STATUS_IN_STATION and not card.checkInTime:
        card.checkInTime = to_iso(now)
        changed = True

    return changed


def normalize_user(user: UserData, now: datetime) -> bool:
    changed = False
    if (user.currentMonth, user.currentYear) != (now.month, now.year):
        user.currentMonth, user.currentYear = now.month, now.year
        changed = True
    for card in user.cards:
        if normalize_card(card, now):
            changed = True
    return changed


def new_user(now: datetime) -> UserData:
    return UserData(cards=[], currentMonth=now.month, currentYear=now.year)


# ---------- input helpers ----------
def validate_card_name(name: str) -> Optional[str]:
    if not name:
        return EMPTY_NAME
    if len(name) > MAX_NAME_LENGTH:
        return NAME_TOO_LONG
    return None


def split_card_names(text: str) -> List[str]:
    return [n.strip() for n in _NAME_SEPARATORS.split(text or "") if n.strip()]


def _new_card_id(user: UserData, now: datetime) -> str:
    taken = {c.id for c in user.cards}
    stamp = int(now.timestamp() * 1000)
    while str(stamp) in taken:
        stamp += 1
    return str(stamp)


class Ledger:
    def __init__(self, store: JsonStore, clock: Optional[Clock] = None) -> None:
        self.store = store
        self.clock = clock or SystemClock()

    # --- helpers ---
    def _checkout(self, data: Database, user_id: str | int) -> Tuple[UserData, bool, datetime]:
        now = self.clock.now()
        key = str(user_id)
        created = False
        user = data.get(key)
        if user is None:
            user = new_user(now)
            data[key] = user
            created = True
        changed = normalize_user(user, now)
        return user, created or changed, now

    def _new_card(self, user: UserData, name: str, now: datetime) -> Card:
        stamp = to_iso(now)
        return Card(
            id=_new_card_id(user, now),
            name=name,
            coupons=Coupons(A=INITIAL_A_GRANT, B=[CouponBatch(monthKey=month_key(now))]),
            dailyUsage=DailyUsage(date=day_key(now)),
            status=STATUS_IDLE,
            lastUsed=None,
            createdAt=stamp,
        )

    # --- reads ---
    def get_user_data(self, user_id: str | int) -> UserData:
        data = self.store.load()
        user, dirty, _ = self._checkout(data, user_id)
        if dirty:
            self.store.save(data)
        return user

    def get_cards(self, user_id: str | int) -> List[Card]:
        return self.get_user_data(user_id).cards

    def get_card(self, user_id: str | int, card_id: str) -> Optional[Card]:
        return self.get_user_data(user_id).find(card_id)

    def list_all_users_cards(self) -> List[UserCards]:
        data = self.store.load()
        now = self.clock.now()
        dirty = False
        out: List[UserCards] = []
        for uid, user in data.items():
            if normalize_user(user, now):
                dirty = True
            out.append(UserCards(user_id=uid, cards=list(user.cards)))
        if dirty:
            self.store.save(data)
        return out

    # --- non-persisting views (for processes that must not write) ---
    def peek_cards(self, user_id: str | int) -> List[Card]:
        """Normalized cards for one user. Never saves and never creates a record."""
        user = self.store.load().get(str(user_id))
        if user is None:
            return []
        normalize_user(user, self.clock.now())
        return user.cards

    def snapshot(self) -> List[UserCards]:
        """Normalized view of every user's cards. Never saves."""
        now = self.clock.now()
        out: List[UserCards] = []
        for uid, user in self.store.load().items():
            normalize_user(user, now)
            out.append(UserCards(user_id=uid, cards=list(user.cards)))
        return out

    # --- card mutations ---
    def add_card(self, user_id: str | int, name: str) -> bool:
        name = (name or "").strip()
        data = self.store.load()
        user, dirty, now = self._checkout(data, user_id)

        reason = validate_card_name(name)
        if reason is None and any(c.name == name for c in user.cards):
            reason = DUPLICATE_NAME
        if reason is not None:
            if dirty:
                self.store.save(data)
            logger.info(f"Card not added for user {user_id}: {name!r} ({reason})")
            return False

        user.cards.append(self._new_card(user, name, now))
        self.store.save(data)
        logger.info(f"Card added for user {user_id}: {name}")
        return True

    def add_cards(self, user_id: str | int, names: Iterable[str]) -> BatchAddResult:
        names = [n.strip() for n in names if n and n.strip()]
        if not names:
            return BatchAddResult(error=EMPTY_INPUT)
        if len(names) > MAX_BATCH_SIZE:
            return BatchAddResult(error=BATCH_LIMIT_EXCEEDED)

        data = self.store.load()
        user, dirty, now = self._checkout(data, user_id)
        result = BatchAddResult()
        for name in names:
            reason = validate_card_name(name)
            if reason is None and any(c.name == name for c in user.cards):
                reason = DUPLICATE_NAME
            if reason is not None:
                result.failed.append((name, reason))
                continue
            user.cards.append(self._new_card(user, name, now))
            result.added.append(name)

        if result.added or dirty:
            self.store.save(data)
        logger.info(f"Batch add for user {user_id}: {len(result.added)} added, {len(result.failed)} failed")
        return result

    def delete_card(self, user_id: str | int, card_id: str) -> bool:
        data = self.store.load()
        user, dirty, _ = self._checkout(data, user_id)
        card = user.find(card_id)
        if card is None:
            if dirty:
                self.store.save(data)
            return False
        user.cards.remove(card)
        self.store.save(data)
        logger.info(f"Card deleted for user {user_id}: {card.name}")
        return True

    def update_status(self, user_id: str | int, card_id: str, new_status: str) -> bool:
        if new_status not in STATUSES:
            logger.warning(f"Rejected unknown status {new_status!r} for card {card_id}")
            return False
        data = self.store.load()
        user, dirty, now = self._checkout(data, user_id)
        card = user.find(card_id)
        if card is None:
            if dirty:
                self.store.save(data)
            return False

        if new_status == STATUS_IN_STATION and card.status != STATUS_IN_STATION:
            card.checkInTime = to_iso(now)
            card.reminderSent = False
        if new_status == STATUS_IDLE:
            card.reminderSent = False
        card.status = new_status
        card.lastUsed = to_iso(now)
        self.store.save(data)
        return True

    def consume_coupon(self, user_id: str | int, card_id: str, coupon_type: str) -> ConsumeResult:
        data = self.store.load()
        # _checkout re-runs the daily reset against this call's clock reading
        user, dirty, now = self._checkout(data, user_id)
        card = user.find(card_id)

        result = self._consume(card, coupon_type)
        if result.success:
            card.status = STATUS_IDLE
            card.reminderSent = False
            card.lastUsed = to_iso(now)
        if result.success or dirty:
            self.store.save(data)
        if result.success:
            logger.info(f"User {user_id} used coupon {coupon_type} on {card.name}; {result.remaining} left")
        return result

    @staticmethod
    def _consume(card: Optional[Card], coupon_type: str) -> ConsumeResult:
        if card is None:
            return ConsumeResult(False, "Card not found.", reason=NOT_FOUND)

        if coupon_type == COUPON_A:
            if card.dailyUsage.A:
                return ConsumeResult(False, "Coupon A was already used on this card today.",
                                     reason=ALREADY_USED_TODAY, coupon_type=COUPON_A)
            if card.coupons.A <= 0:
                return ConsumeResult(False, "Coupon A is exhausted.",
                                     reason=EXHAUSTED, coupon_type=COUPON_A, remaining=0)
            card.coupons.A -= 1
            card.dailyUsage.A = True
            return ConsumeResult(True, f"Coupon A used, {card.coupons.A} left.",
                                 coupon_type=COUPON_A, remaining=card.coupons.A)

        if coupon_type == COUPON_B:
            if card.dailyUsage.B:
                return ConsumeResult(False, "Coupon B was already used on this card today.",
                                     reason=ALREADY_USED_TODAY, coupon_type=COUPON_B)
            usable = [b for b in card.coupons.B if b.count > 0]
            if not usable:
                return ConsumeResult(False, "Coupon B is exhausted for this month.",
                                     reason=EXHAUSTED, coupon_type=COUPON_B, remaining=0)
            batch = min(usable, key=lambda b: b.monthKey)
            batch.count -= 1
            card.dailyUsage.B = True
            total = card.coupons.total_b()
            return ConsumeResult(True, f"Coupon B ({batch.monthKey}) used, {total} left.",
                                 coupon_type=COUPON_B, remaining=total, batch=batch.monthKey)

        return ConsumeResult(False, f"Invalid coupon type: {coupon_type!r}.", reason=INVALID_TYPE)

    # --- bulk / scanner support ---
    def reset_all_status(self, user_id: str | int) -> int:
        data = self.store.load()
        user, dirty, _ = self._checkout(data, user_id)
        changed = 0
        for card in user.cards:
            if card.status != STATUS_IDLE or card.reminderSent:
                card.status = STATUS_IDLE
                card.reminderSent = False
                changed += 1
        if changed or dirty:
            self.store.save(data)
        logger.info(f"Reset {changed} card(s) to idle for user {user_id}")
        return changed

    def mark_reminder_sent(self, user_id: str | int, card_id: str, value: bool = True,
                           check_in_time: Optional[str] = None) -> bool:
        """
        Set reminderSent on a card. With check_in_time, only the session that
        started at that time is flagged.
        """
        data = self.store.load()
        user, dirty, _ = self._checkout(data, user_id)
        card = user.find(card_id)
        # a card checked out (or checked in again) while the reminder was in flight stays unflagged
        stale = card is not None and check_in_time is not None and card.checkInTime != check_in_time
        if card is None or stale or (value and card.status != STATUS_IN_STATION):
            if dirty:
                self.store.save(data)
            return False
        card.reminderSent = value
        self.store.save(data)
        return True

"""
metrocard/utils/dialogue_templates.py
-------------------------------------
Plain-text phrasing for menus, results and reminders.
No Telegram types here; keyboards are built in the connector.
"""

from __future__ import annotations
from typing import List, Sequence

from metrocard.core.models import (
    ALREADY_USED_TODAY, COUPON_A, COUPON_B, DUPLICATE_NAME, EMPTY_NAME,
    MAX_BATCH_SIZE, MAX_NAME_LENGTH, NAME_TOO_LONG, STATUS_IN_STATION,
    BatchAddResult, Card, ConsumeResult,
)
from metrocard.utils.time_utils import humanize_minutes

COUPON_LABELS = {COUPON_A: "50% off", COUPON_B: "¥2 off"}

FAILURE_LABELS = {
    NAME_TOO_LONG: "name too long",
    DUPLICATE_NAME: "already exists",
    EMPTY_NAME: "empty name",
    ALREADY_USED_TODAY: "used today",
}

HELP_TEXT = f"""🚇 Metro card bot

Tracks the metro discount coupons on your credit cards.

Coupon rules:
1. Every card starts with 10 {COUPON_LABELS[COUPON_A]} coupons (A). They are never refilled.
2. Every month a card gets 5 {COUPON_LABELS[COUPON_B]} coupons (B), valid that month only.
3. Each card can use one A and one B coupon per day.

Commands:
• /start - main menu
• /cards - list your cards
• /reset - set every card back to idle
• /help - this message

Usage:
1. Tap a card when you enter the metro.
2. Tap it again when you leave, then pick the coupon to use.
3. If you forget to check out, you'll get one reminder.
"""

def both_used_today(card: Card) -> bool:
    return card.dailyUsage.A and card.dailyUsage.B

def usable_types(card: Card) -> List[str]:
    """Coupon types that could be consumed right now."""
    out = []
    if not card.dailyUsage.A and card.coupons.A > 0:
        out.append(COUPON_A)
    if not card.dailyUsage.B and card.coupons.total_b() > 0:
        out.append(COUPON_B)
    return out

def total_coupons(card: Card) -> int:
    return card.coupons.A + card.coupons.total_b()

def status_emoji(card: Card) -> str:
    if card.status == STATUS_IN_STATION: return "🚇"
    if both_used_today(card): return "😴"
    return "😃"

def coupon_emoji(card: Card) -> str:
    total = total_coupons(card)
    if total == 0: return "🔴"
    if total <= 2: return "🟠"
    if total <= 5: return "🟡"
    return "🟢"

def status_text(card: Card) -> str:
    if card.status == STATUS_IN_STATION:
        return "in station"
    if both_used_today(card):
        return "done for today"
    if card.dailyUsage.A:
        return f"used {COUPON_LABELS[COUPON_A]}"
    if card.dailyUsage.B:
        return f"used {COUPON_LABELS[COUPON_B]}"
    return "idle"

def card_line(card: Card) -> str:
    return (f"{status_emoji(card)} {card.name} (A: {card.coupons.A} B: {card.coupons.total_b()}) "
            f"{coupon_emoji(card)} - {status_text(card)}")

def main_menu_text(cards: Sequence[Card]) -> str:
    text = "🚇 Metro card manager\n\n"
    if not cards:
        return text + "You have no cards yet. Tap the button below to add your first one!"
    text += "Your cards:\n"
    text += "\n".join(card_line(c) for c in cards)
    return text + "\n"

def coupon_button_label(card: Card, coupon_type: str) -> str:
    left = card.coupons.A if coupon_type == COUPON_A else card.coupons.total_b()
    icon = "🎟️" if coupon_type == COUPON_A else "🎫"
    return f"{icon} Use {COUPON_LABELS[coupon_type]} ({left} left)"

def consume_text(card_name: str, result: ConsumeResult, auto: bool = False) -> str:
    if not result.success:
        return result.message
    prefix = "Auto-used" if auto else "Used"
    label = COUPON_LABELS.get(result.coupon_type or "", result.coupon_type or "")
    return f"✅ {prefix} {label} on {card_name} ({result.remaining} left)"

def batch_report(result: BatchAddResult) -> str:
    lines: List[str] = ["📋 Batch add result:", ""]
    if result.added:
        lines.append(f"✅ Added {len(result.added)} card(s):")
        lines.extend(f"• {name}" for name in result.added)
    if result.failed:
        if result.added:
            lines.append("")
        lines.append(f"❌ Failed {len(result.failed)} card(s):")
        lines.extend(f"• {name} ({FAILURE_LABELS.get(reason, reason)})" for name, reason in result.failed)
    return "\n".join(lines)

def reminder_text(card_name: str, elapsed_minutes: float) -> str:
    return (f"⏰ Reminder: card “{card_name}” has been checked in for "
            f"{humanize_minutes(elapsed_minutes)}. Did you leave the station?")

PROMPTS: dict[str, str] = {
    "card_name": "Enter a card name (e.g. ICBC Visa, CMB Mastercard):",
    "batch_names": (f"Enter several card names separated by commas.\n\n"
                    f"Example: ICBC,CMB,CCB\n\n💡 Up to {MAX_BATCH_SIZE} cards, "
                    f"{MAX_NAME_LENGTH} characters each"),
    "empty_name": "The card name can't be empty, try again:",
    "name_too_long": f"That name is too long, use at most {MAX_NAME_LENGTH} characters:",
    "duplicate_name": "A card with that name already exists, pick another:",
    "empty_input": "No card names found, try again:",
    "batch_limit_exceeded": f"You can add at most {MAX_BATCH_SIZE} cards at once, try again:",
}

REMINDER_BUTTON_LABEL = "✅ I've left, pick a coupon"

def prompt(key: str) -> str:
    return PROMPTS[key]

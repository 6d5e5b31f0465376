from __future__ import annotations
from typing import Sequence

from telegram import BotCommand, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import BadRequest, TelegramError
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from metrocard.audit.logger import get_logger, initialize_logging
from metrocard.core.ledger import Ledger, split_card_names, validate_card_name
from metrocard.core.models import STATUS_IDLE, STATUS_IN_STATION, Card
from metrocard.utils.config import TOKEN_PLACEHOLDER, get_config
from metrocard.utils.dialogue_templates import (
    HELP_TEXT, REMINDER_BUTTON_LABEL, batch_report, both_used_today, card_line,
    consume_text, coupon_button_label, main_menu_text, prompt, total_coupons,
    usable_types,
)
from metrocard.utils.scheduler import REMINDER_ACTION_PREFIX, start_scheduler
from metrocard.utils.store import JsonStore
from metrocard.utils.time_utils import clock_from_config

logger = get_logger(__name__)

STATE_KEY = "state"
WAITING_CARD_NAME = "waiting_card_name"
WAITING_BATCH_NAMES = "waiting_batch_card_names"

BOT_COMMANDS = [
    BotCommand("start", "Show the main menu"),
    BotCommand("cards", "List your cards"),
    BotCommand("reset", "Set every card back to idle"),
    BotCommand("help", "Show help"),
]


def _ledger(context: ContextTypes.DEFAULT_TYPE) -> Ledger:
    return context.bot_data["ledger"]


# ---------- keyboards ----------
def card_keyboard(cards: Sequence[Card]) -> InlineKeyboardMarkup:
    if not cards:
        return InlineKeyboardMarkup([[InlineKeyboardButton("➕ Add card", callback_data="add_card")]])
    rows = [[InlineKeyboardButton(card_line(c), callback_data=f"card_{c.id}")] for c in cards]
    rows.append([
        InlineKeyboardButton("➕ Add card", callback_data="add_card"),
        InlineKeyboardButton("➕ Batch add", callback_data="batch_add_card"),
    ])
    rows.append([InlineKeyboardButton("🗑️ Delete card", callback_data="delete_menu")])
    return InlineKeyboardMarkup(rows)

def delete_keyboard(cards: Sequence[Card]) -> InlineKeyboardMarkup:
    rows = [[InlineKeyboardButton(f"🗑️ {c.name}", callback_data=f"delete_{c.id}")] for c in cards]
    rows.append([InlineKeyboardButton("⬅️ Back", callback_data="back_to_main")])
    return InlineKeyboardMarkup(rows)

def coupon_keyboard(card: Card, types: Sequence[str]) -> InlineKeyboardMarkup:
    rows = [[InlineKeyboardButton(coupon_button_label(card, t), callback_data=f"use{t}_{card.id}")]
            for t in types]
    rows.append([InlineKeyboardButton("🚪 Check out without a coupon", callback_data=f"skip_{card.id}")])
    return InlineKeyboardMarkup(rows)


# ---------- menus ----------
async def show_main_menu(update: Update, context: ContextTypes.DEFAULT_TYPE, edit: bool = True) -> None:
    user = update.effective_user
    if user is None:
        return
    cards = _ledger(context).get_cards(user.id)
    text, keyboard = main_menu_text(cards), card_keyboard(cards)

    query = update.callback_query
    if edit and query is not None:
        try:
            await query.edit_message_text(text, reply_markup=keyboard)
            return
        except BadRequest as e:
            if "not modified" in str(e).lower():
                return
            logger.debug(f"Menu edit failed, sending a new message: {e}")
    await update.effective_chat.send_message(text, reply_markup=keyboard)

async def _drop_message(update: Update) -> None:
    try:
        await update.callback_query.delete_message()
    except TelegramError as e:
        logger.debug(f"Could not delete message: {e}")


# ---------- commands ----------
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    context.user_data.pop(STATE_KEY, None)
    await show_main_menu(update, context)

async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await update.message.reply_text(HELP_TEXT)

async def cmd_reset(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    _ledger(context).reset_all_status(update.effective_user.id)
    await update.message.reply_text("✅ All cards are back to idle.")
    await show_main_menu(update, context)


# ---------- callbacks ----------
async def on_add_card(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    context.user_data[STATE_KEY] = WAITING_CARD_NAME
    await update.callback_query.answer()
    await update.effective_chat.send_message(prompt("card_name"))

async def on_batch_add(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    context.user_data[STATE_KEY] = WAITING_BATCH_NAMES
    await update.callback_query.answer()
    await update.effective_chat.send_message(prompt("batch_names"))

async def _check_out(update: Update, context: ContextTypes.DEFAULT_TYPE, card: Card,
                     edit: bool = True) -> None:
    """Consume the only usable coupon, or ask which one to use."""
    query = update.callback_query
    types = usable_types(card)
    if len(types) == 1:
        result = _ledger(context).consume_coupon(update.effective_user.id, card.id, types[0])
        await query.answer(consume_text(card.name, result, auto=True))
        if result.success:
            await show_main_menu(update, context, edit=edit)
        return
    await query.answer()
    await update.effective_chat.send_message(f"Pick the coupon to use on {card.name}:",
                                             reply_markup=coupon_keyboard(card, types))

async def on_card(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    ledger = _ledger(context)
    user_id = update.effective_user.id
    card = ledger.get_card(user_id, context.match.group(1))
    if card is None:
        await query.answer("Card not found!")
        return

    if card.status == STATUS_IN_STATION:
        await _check_out(update, context, card)
        return
    if total_coupons(card) == 0:
        await query.answer("No coupons left on this card!")
        return
    if both_used_today(card):
        await query.answer("Both of today's coupons on this card are used!")
        return
    ledger.update_status(user_id, card.id, STATUS_IN_STATION)
    await query.answer(f"✅ {card.name} checked in")
    await show_main_menu(update, context)

async def on_use_coupon(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    coupon_type, card_id = context.match.group(1), context.match.group(2)
    ledger = _ledger(context)
    user_id = update.effective_user.id
    card = ledger.get_card(user_id, card_id)
    result = ledger.consume_coupon(user_id, card_id, coupon_type)
    if not result.success:
        await query.answer(result.message)
        return
    await _drop_message(update)
    await query.answer()
    await update.effective_chat.send_message(consume_text(card.name if card else card_id, result))
    await show_main_menu(update, context, edit=False)

async def on_skip_coupon(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not _ledger(context).update_status(update.effective_user.id, context.match.group(1), STATUS_IDLE):
        await query.answer("Card not found!")
        return
    await _drop_message(update)
    await query.answer("Checked out, no coupon used")
    await show_main_menu(update, context, edit=False)

async def on_delete_menu(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    cards = _ledger(context).get_cards(update.effective_user.id)
    text = "Pick the card to delete:" if cards else "There are no cards to delete."
    await query.edit_message_text(text, reply_markup=delete_keyboard(cards))
    await query.answer()

async def on_delete_card(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    ledger = _ledger(context)
    user_id = update.effective_user.id
    card = ledger.get_card(user_id, context.match.group(1))
    if card is None or not ledger.delete_card(user_id, card.id):
        await query.answer("Card not found!")
        return
    await query.answer(f"Deleted card: {card.name}")
    await show_main_menu(update, context)

async def on_back(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await show_main_menu(update, context)
    await update.callback_query.answer()

async def on_reminder_checkout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    card = _ledger(context).get_card(update.effective_user.id, context.match.group(1))
    await _drop_message(update)
    if card is None or card.status != STATUS_IN_STATION:
        await query.answer("This card is not checked in")
        return
    await _check_out(update, context, card, edit=False)


# ---------- text input ----------
async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    state = context.user_data.get(STATE_KEY)
    ledger = _ledger(context)
    user_id = update.effective_user.id
    text = (update.message.text or "").strip()

    if state == WAITING_CARD_NAME:
        reason = validate_card_name(text)
        if reason is not None:
            await update.message.reply_text(prompt(reason))
            return
        if not ledger.add_card(user_id, text):
            await update.message.reply_text(prompt("duplicate_name"))
            return
        context.user_data.pop(STATE_KEY, None)
        await update.message.reply_text(f"✅ Added card: {text}")
        await show_main_menu(update, context)
    elif state == WAITING_BATCH_NAMES:
        result = ledger.add_cards(user_id, split_card_names(text))
        if not result.ok:
            await update.message.reply_text(prompt(result.error))
            return
        context.user_data.pop(STATE_KEY, None)
        await update.message.reply_text(batch_report(result))
        await show_main_menu(update, context)
    else:
        await show_main_menu(update, context)


async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Bot error", exc_info=context.error)
    if isinstance(update, Update) and update.effective_chat is not None:
        try:
            await update.effective_chat.send_message("Something went wrong, please try again later.")
        except TelegramError as e:
            logger.warning(f"Could not report error to chat: {e}")


# ---------- outbound ----------
async def send_reminder(bot, user_id: str, text: str, action_ref: str) -> bool:
    """Deliver a checkout reminder with a single action button."""
    try:
        chat_id = int(user_id)
    except (TypeError, ValueError):
        logger.warning(f"Skipping reminder for non-numeric user id {user_id!r}")
        return False
    keyboard = InlineKeyboardMarkup([[InlineKeyboardButton(REMINDER_BUTTON_LABEL, callback_data=action_ref)]])
    try:
        await bot.send_message(chat_id=chat_id, text=text, reply_markup=keyboard)
        return True
    except TelegramError as e:
        logger.error(f"Failed to send timeout reminder to user {user_id}: {e}")
        return False


async def _post_init(application: Application) -> None:
    await application.bot.set_my_commands(BOT_COMMANDS)


def register_handlers(application: Application) -> None:
    application.add_handler(CommandHandler("start", cmd_start))
    application.add_handler(CommandHandler("cards", cmd_start))
    application.add_handler(CommandHandler("help", cmd_help))
    application.add_handler(CommandHandler("reset", cmd_reset))
    application.add_handler(CallbackQueryHandler(on_add_card, pattern=r"^add_card$"))
    application.add_handler(CallbackQueryHandler(on_batch_add, pattern=r"^batch_add_card$"))
    application.add_handler(CallbackQueryHandler(on_card, pattern=r"^card_(.+)$"))
    application.add_handler(CallbackQueryHandler(on_use_coupon, pattern=r"^use([AB])_(.+)$"))
    application.add_handler(CallbackQueryHandler(on_skip_coupon, pattern=r"^skip_(.+)$"))
    application.add_handler(CallbackQueryHandler(on_delete_menu, pattern=r"^delete_menu$"))
    application.add_handler(CallbackQueryHandler(on_delete_card, pattern=r"^delete_(?!menu$)(.+)$"))
    application.add_handler(CallbackQueryHandler(on_back, pattern=r"^back_to_main$"))
    application.add_handler(CallbackQueryHandler(on_reminder_checkout,
                                                 pattern=rf"^{REMINDER_ACTION_PREFIX}(.+)$"))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, on_text))
    application.add_error_handler(on_error)


def build_application(cfg: dict, ledger: Ledger) -> Application:
    application = ApplicationBuilder().token(cfg["BOT_TOKEN"]).post_init(_post_init).build()
    application.bot_data["ledger"] = ledger
    register_handlers(application)

    async def notify(user_id: str, text: str, action_ref: str) -> bool:
        return await send_reminder(application.bot, user_id, text, action_ref)

    start_scheduler(application, ledger, notify,
                    interval_s=cfg["REMINDER_CHECK_INTERVAL_S"],
                    threshold_minutes=cfg["CHECKOUT_TIMEOUT_MINUTES"])
    return application


def main() -> None:
    initialize_logging()
    cfg = get_config()
    if not cfg["BOT_TOKEN"] or cfg["BOT_TOKEN"] == TOKEN_PLACEHOLDER:
        logger.error("BOT_TOKEN is missing; set it in .env (see `metrocard-preflight`)")
        raise SystemExit(1)
    ledger = Ledger(JsonStore(cfg["DATA_FILE"]), clock_from_config(cfg))
    application = build_application(cfg, ledger)
    logger.info("Starting Metro Card Bot...")
    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()

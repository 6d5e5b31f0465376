"""
metrocard/api/main.py
---------------------
Read-only HTTP surface: health, a user's cards, and overdue check-ins
(no push; poll & display, e.g. from cron). The bot owns every write;
this process only loads and normalizes in memory.
"""

from __future__ import annotations
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

from metrocard.audit.logger import get_logger, initialize_logging
from metrocard.core.ledger import Ledger
from metrocard.utils.config import get_config
from metrocard.utils.scheduler import find_overdue
from metrocard.utils.store import JsonStore
from metrocard.utils.time_utils import clock_from_config

logger = get_logger(__name__)

app = FastAPI(title="Metro Card API")

_ledger: Optional[Ledger] = None

def get_ledger() -> Ledger:
    global _ledger
    if _ledger is None:
        cfg = get_config()
        _ledger = Ledger(JsonStore(cfg["DATA_FILE"]), clock_from_config(cfg))
    return _ledger

@app.on_event("startup")
def _startup() -> None:
    initialize_logging()
    logger.info("Metro Card API started.")

# -------------------- health --------------------
@app.get("/health", include_in_schema=False)
def health(): return JSONResponse({"status": "ok"})

# -------------------- cards --------------------
@app.get("/users/{user_id}/cards")
def user_cards(user_id: str, ledger: Ledger = Depends(get_ledger)) -> Dict[str, Any]:
    cards = ledger.peek_cards(user_id)
    return {"user_id": user_id, "cards": [c.model_dump(mode="json") for c in cards]}

# -------------------- temporal checks endpoint --------------------
@app.get("/check_reminders")
def check_reminders(threshold_minutes: Optional[int] = None,
                    ledger: Ledger = Depends(get_ledger)) -> Dict[str, Any]:
    """Overdue check-ins that have not been reminded yet. Nothing is sent or flagged."""
    threshold = threshold_minutes
    if threshold is None:
        threshold = get_config()["CHECKOUT_TIMEOUT_MINUTES"]
    msgs = find_overdue(ledger.snapshot(), ledger.clock.now(), threshold)
    return {"count": len(msgs), "threshold_minutes": threshold, "messages": msgs}


if __name__ == "__main__":
    import uvicorn
    cfg = get_config()
    uvicorn.run("metrocard.api.main:app", host=cfg["API_HOST"], port=cfg["API_PORT"], reload=False)

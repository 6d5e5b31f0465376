from __future__ import annotations
import sys, importlib, traceback, time

from metrocard.utils.config import TOKEN_PLACEHOLDER, get_config

def token_check(cfg: dict) -> bool:
    token = cfg.get("BOT_TOKEN", "")
    if not token or token == TOKEN_PLACEHOLDER:
        print("[Preflight] BOT_TOKEN: not configured (edit .env)")
        return False
    print("[Preflight] BOT_TOKEN: configured")
    return True

def store_check(cfg: dict) -> bool:
    print(f"[Preflight] Data file: {cfg['DATA_FILE']}")
    try:
        from metrocard.utils.store import JsonStore
        data = JsonStore(cfg["DATA_FILE"]).load()
        print(f"[Preflight] Store readable ({len(data)} user(s)).")
        return True
    except Exception:
        print("[Preflight] Store check failed:")
        traceback.print_exc()
        return False

def import_check() -> bool:
    print("[Preflight] Verifying core imports...")
    try:
        importlib.import_module("metrocard.core.ledger")
        importlib.import_module("metrocard.utils.scheduler")
        importlib.import_module("metrocard.connectors.telegram")
        print("[Preflight] Import check passed.")
        return True
    except Exception:
        print("[Preflight] Import check failed:")
        traceback.print_exc()
        return False

def main() -> None:
    start = time.time()
    cfg = get_config()
    if not import_check():
        sys.exit(2)
    if not store_check(cfg):
        sys.exit(3)
    if not token_check(cfg):
        sys.exit(1)
    print(f"[Preflight] All checks passed in {round(time.time()-start,2)}s.")
    sys.exit(0)

if __name__ == "__main__":
    main()

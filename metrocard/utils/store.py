"""
metrocard/utils/store.py
------------------------
Whole-document JSON store: user id -> UserData.
Reads never raise (corrupt/missing -> empty database); writes are best-effort.
"""

from __future__ import annotations
import json
import shutil
import time
from pathlib import Path
from typing import Any, Dict

from pydantic import ValidationError

from metrocard.audit.logger import get_logger
from metrocard.core.models import DATABASE_ADAPTER, Database

logger = get_logger(__name__)


def dump_database(data: Database) -> Dict[str, Any]:
    return DATABASE_ADAPTER.dump_python(data, mode="json")


class JsonStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._ensure_file()

    def _ensure_file(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.save({})

    def _backup_corrupt(self) -> None:
        backup = self.path.with_name(f"{self.path.name}.corrupt-{int(time.time())}")
        try:
            shutil.copyfile(self.path, backup)
            logger.error(f"Corrupt data file copied to {backup}; continuing with an empty database")
        except OSError as e:
            logger.error(f"Corrupt data file could not be backed up: {e}")

    def load(self) -> Database:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning(f"Data file {self.path} missing; using empty database")
            return {}
        except OSError as e:
            logger.error(f"Error loading data from {self.path}: {e}")
            return {}
        except ValueError as e:
            logger.error(f"Data file {self.path} is not valid JSON: {e}")
            self._backup_corrupt()
            return {}

        try:
            return DATABASE_ADAPTER.validate_python(raw)
        except ValidationError as e:
            logger.error(f"Data file {self.path} has an unexpected shape: {e}")
            self._backup_corrupt()
            return {}

    def save(self, data: Database) -> bool:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            text = json.dumps(dump_database(data), indent=2, ensure_ascii=False)
            tmp.write_text(text, encoding="utf-8")
            tmp.replace(self.path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Error saving data to {self.path}: {e}")
            return False

"""
storage.py - snapshot persistence

The whole ledger state is stored as one serialized JSON snapshot under a single
named key of a small key-value store (a "slot"). Two slot backends exist:
 - JsonFileSlot: a JSON object file on disk, written atomically
 - MemorySlot: an in-process dict, used by tests

SnapshotStorage sits on top of a slot and never raises: a missing or corrupt
snapshot loads as None, and a failed write is logged and suppressed.
"""

from typing import Dict, Optional
import json
import logging
import os
import shutil
import sys
import tempfile

from splitcat.models import LedgerState

STORAGE_KEY = "splitcat-data"

_default_data_file = os.path.join(os.path.dirname(__file__), "..", "data", "splitcat_data.json")
# Under pytest the default slot lives in the temp dir so the real data file is never touched.
if any("pytest" in p for p in sys.argv) or os.getenv("PYTEST_CURRENT_TEST"):
    _default_data_file = os.path.join(tempfile.gettempdir(), "tmp_splitcat_test.json")
DATA_FILE = os.getenv("SPLITCAT_DATA_FILE") or _default_data_file

logger = logging.getLogger(__name__)


class MemorySlot:
    """Key-value slot kept in memory."""

    def __init__(self, items: Optional[Dict[str, str]] = None):
        self.items: Dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str):
        self.items[key] = value

    def describe(self) -> str:
        return "memory"


class JsonFileSlot:
    """
    Key-value slot backed by a JSON object file: {key: serialized value, ...}.
    Other keys already present in the file are preserved on write.
    """

    def __init__(self, path: str = None):
        self.path = os.path.abspath(path or DATA_FILE)

    def _read_all(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def get_item(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set_item(self, key: str, value: str):
        try:
            data = self._read_all()
        except ValueError:
            logger.warning("Overwriting unreadable slot file %s", self.path)
            data = {}
        data[key] = value

        dirn = os.path.dirname(self.path)
        os.makedirs(dirn, exist_ok=True)
        # atomic write: write to temp file then move
        fd, tmp_path = tempfile.mkstemp(prefix="tmp_splitcat_", dir=dirn, text=True)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            shutil.move(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def describe(self) -> str:
        return self.path


class SnapshotStorage:
    """Loads and saves the full LedgerState under one key of a slot."""

    def __init__(self, slot=None, key: str = STORAGE_KEY):
        self.slot = slot if slot is not None else JsonFileSlot()
        self.key = key

    def load(self) -> Optional[LedgerState]:
        """
        Return the last saved state, or None when nothing usable is stored.
        Corrupt data is logged and treated the same as no data.
        """
        try:
            raw = self.slot.get_item(self.key)
            if not raw:
                return None
            return LedgerState.from_dict(json.loads(raw))
        except Exception as exc:
            logger.warning("Ignoring unreadable snapshot %r in %s (%s: %s)",
                           self.key, self.slot.describe(), exc.__class__.__name__, exc)
            return None

    def save(self, state: LedgerState) -> bool:
        """Overwrite the stored snapshot. Failures are logged, never raised."""
        try:
            payload = json.dumps(state.to_dict(), ensure_ascii=False)
            self.slot.set_item(self.key, payload)
        except Exception:
            logger.exception("Failed to save snapshot %r to %s", self.key, self.slot.describe())
            return False
        logger.info("Saved snapshot to %s (participants=%d, expenses=%d)",
                    self.slot.describe(), len(state.participants), len(state.expenses))
        return True

"""
Client-side key/value storage

Two scopes, mirroring what a browser gives a storefront page:
- MemoryStore: session-scoped, gone when the browsing session ends
- JsonFileStore: durable, survives reloads and process restarts

Values are plain JSON. Reads never raise: an unreadable entry is reported
as missing.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

PENDING_PAYMENT_KEY = "eco.pendingPayment"
UNLINKED_PAYMENTS_KEY = "eco.unlinkedPayments"


class MemoryStore:
    """Session-scoped storage; holds serialized JSON strings like sessionStorage does"""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()


class JsonFileStore:
    """
    Durable storage backed by a single JSON file.

    Writes go to a temporary file that is then renamed over the original,
    so a crash mid-write leaves the previous contents intact.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read storage file {self.path}: {e}")
            return {}

    def _save(self, data: Dict[str, str]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, 'w') as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


def read_json(store, key: str) -> Optional[Any]:
    """Parse a stored JSON value; None when missing or corrupt"""
    raw = store.get_item(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to parse stored value for {key}: {e}")
        return None


def write_json(store, key: str, value: Any) -> None:
    store.set_item(key, json.dumps(value))


class PendingPaymentStore:
    """
    Cross-session client state for payments not yet reconciled with an
    account.

    The latest checkout is stored as {"pendingPaymentId": "..."} under one
    durable key; readers must treat it as advisory and re-check the payment
    status. Guest payments seen to succeed are also listed under
    {"paymentIds": [...]} until they are linked.
    """

    def __init__(self, store):
        self._store = store

    def get(self) -> Optional[str]:
        data = read_json(self._store, PENDING_PAYMENT_KEY)
        if not isinstance(data, dict):
            return None
        payment_id = data.get("pendingPaymentId")
        return payment_id or None

    def set(self, payment_id: str) -> None:
        write_json(self._store, PENDING_PAYMENT_KEY, {"pendingPaymentId": payment_id})

    def clear(self, payment_id: Optional[str] = None) -> None:
        """Clear the record; with payment_id, only if it still refers to that payment"""
        if payment_id is not None and self.get() != payment_id:
            return
        self._store.remove_item(PENDING_PAYMENT_KEY)

    # Successful guest payments not yet attached to an account. Kept apart
    # from the pending record, which a newer checkout overwrites.

    def unlinked(self) -> List[str]:
        data = read_json(self._store, UNLINKED_PAYMENTS_KEY)
        if not isinstance(data, dict):
            return []
        ids = data.get("paymentIds")
        if not isinstance(ids, list):
            return []
        return [str(payment_id) for payment_id in ids if payment_id]

    def add_unlinked(self, payment_id: str) -> None:
        ids = self.unlinked()
        if payment_id not in ids:
            ids.append(payment_id)
            write_json(self._store, UNLINKED_PAYMENTS_KEY, {"paymentIds": ids})

    def discard_unlinked(self, payment_id: str) -> None:
        ids = self.unlinked()
        if payment_id not in ids:
            return
        ids.remove(payment_id)
        if ids:
            write_json(self._store, UNLINKED_PAYMENTS_KEY, {"paymentIds": ids})
        else:
            self._store.remove_item(UNLINKED_PAYMENTS_KEY)

# services/api/core/account_store.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from adapters.base import KeyValueAdapter
from core.errors import NotFoundError, ValidationError
from schemas.account import Account

logger = logging.getLogger(__name__)

KEY_PREFIX = "gdrive_"

# Never leave the store through list/get
SECRET_FIELDS = ("refresh_token", "client_secret")

REQUIRED_FIELDS = ("id", "name", "refresh_token")


def _key(account_id: str) -> str:
    return f"{KEY_PREFIX}{account_id}"


def redact(record: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of `record` without credential fields."""
    return {k: v for k, v in record.items() if k not in SECRET_FIELDS}


def _clean(values: Dict[str, Any]) -> Dict[str, Any]:
    """Strip strings and drop None or blank values (treated as not sent)."""
    out: Dict[str, Any] = {}
    for k, v in values.items():
        if isinstance(v, str):
            v = v.strip()
        if v is None or v == "":
            continue
        out[k] = v
    return out


class AccountStore:
    """
    Account CRUD over a flat key-value adapter.

    Records live under "gdrive_<id>" as JSON. This class is the only owner of
    persisted records; callers get copies.
    """

    def __init__(self, adapter: KeyValueAdapter):
        self.adapter = adapter

    def _read(self, account_id: str) -> Optional[Dict[str, Any]]:
        raw = self.adapter.get(_key(account_id))
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Corrupt account record under key %s", _key(account_id))
            return None
        return data if isinstance(data, dict) else None

    def _write(self, record: Dict[str, Any]) -> None:
        self.adapter.put(_key(record["id"]), json.dumps(record, ensure_ascii=False))

    # ========== Read ==========

    def list_accounts(self) -> List[Dict[str, Any]]:
        """All accounts, redacted, ordered by key."""
        accounts = []
        for key in self.adapter.list_keys(KEY_PREFIX):
            record = self._read(key[len(KEY_PREFIX):])
            if record:
                accounts.append(redact(record))
        return accounts

    def get_account(self, account_id: str) -> Dict[str, Any]:
        """One account, redacted. Raises NotFoundError."""
        record = self._read(account_id)
        if record is None:
            raise NotFoundError("Account Not Found")
        return redact(record)

    def load(self, account_id: str) -> Account:
        """
        Full record including credentials, for the token provider.
        Raises NotFoundError.
        """
        record = self._read(account_id)
        if record is None:
            raise NotFoundError("Account Not Found")
        return Account(**record)

    # ========== Write ==========

    def add_account(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create (or overwrite) an account.

        Raises:
            ValidationError: if id, name or refresh_token is missing/blank,
                or id contains '/'.
        """
        record = _clean(values)
        missing = [f for f in REQUIRED_FIELDS if not record.get(f)]
        if missing:
            raise ValidationError(f"Missing fields: {', '.join(missing)}")
        if "/" in record["id"]:
            raise ValidationError("Account id must not contain '/'")

        if self._read(record["id"]) is not None:
            logger.info("Overwriting existing account %s", record["id"])
        self._write(record)
        logger.info("Added account %s", record["id"])
        return redact(record)

    def update_account(self, account_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge `values` into an existing account. `id` is immutable.

        Raises:
            NotFoundError: unknown account_id.
            ValidationError: body id differs from account_id.
        """
        existing = self._read(account_id)
        if existing is None:
            raise NotFoundError("Account Not Found")

        updates = _clean(values)
        body_id = updates.pop("id", None)
        if body_id and body_id != account_id:
            raise ValidationError("Account id is immutable")

        merged = {**existing, **updates, "id": account_id}
        self._write(merged)
        logger.info("Updated account %s (fields: %s)", account_id, sorted(updates))
        return redact(merged)

    def delete_account(self, account_id: str) -> None:
        """Remove an account. Missing ids are a no-op."""
        self.adapter.delete(_key(account_id))
        logger.info("Deleted account %s", account_id)

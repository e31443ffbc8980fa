from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.portal.models import StateValue


class KeyValueState:
    """
    Site-wide key/value state backed by the `state_values` table.

    Values are JSON-encoded. There is exactly one value per key, visible to every
    worker; nothing here is scoped to a user or a session.
    """

    def __init__(self, s: Session):
        self.s = s

    def get(self, key: str, default: Any = None) -> Any:
        row = self.s.get(StateValue, key)
        if row is None or row.value_json is None:
            return default
        return json.loads(row.value_json)

    def set(self, key: str, value: Any) -> None:
        row = self.s.get(StateValue, key)
        if row is None:
            row = StateValue(key=key)
            self.s.add(row)
        row.value_json = json.dumps(value, sort_keys=True)
        row.updated_at = datetime.utcnow()
        self.s.flush()

    def delete(self, key: str) -> None:
        row = self.s.get(StateValue, key)
        if row is not None:
            self.s.delete(row)
            self.s.flush()

    def keys_with_prefix(self, prefix: str) -> list[str]:
        q = select(StateValue.key).where(StateValue.key.startswith(prefix, autoescape=True))
        return list(self.s.scalars(q))

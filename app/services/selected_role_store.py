# app/services/selected_role_store.py
from __future__ import annotations

from typing import Dict, Optional, Protocol, Tuple

from sqlalchemy.orm import sessionmaker

from app.models.selected_role import SelectedRoleRecord


class SelectedRoleStore(Protocol):
    """Durable per-device "selectedRole" marker, scoped to one phone."""

    def get(self, device_key: str, phone: str) -> Optional[str]: ...

    def set(self, device_key: str, phone: str, role: str) -> None: ...

    def clear(self, device_key: str) -> None: ...


class InMemorySelectedRoleStore:
    def __init__(self) -> None:
        self._items: Dict[str, Tuple[str, str]] = {}

    def get(self, device_key: str, phone: str) -> Optional[str]:
        item = self._items.get(device_key)
        if item is None or item[0] != phone:
            return None
        return item[1]

    def set(self, device_key: str, phone: str, role: str) -> None:
        self._items[device_key] = (phone, role)

    def clear(self, device_key: str) -> None:
        self._items.pop(device_key, None)


class SqlAlchemySelectedRoleStore:
    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def get(self, device_key: str, phone: str) -> Optional[str]:
        with self.session_factory() as db:
            row = db.get(SelectedRoleRecord, device_key)
            if row is None or row.phone != phone:
                return None
            return row.role

    def set(self, device_key: str, phone: str, role: str) -> None:
        with self.session_factory() as db:
            row = db.get(SelectedRoleRecord, device_key)
            if row is None:
                row = SelectedRoleRecord(device_key=device_key)
                db.add(row)
            row.phone = phone
            row.role = role
            db.commit()

    def clear(self, device_key: str) -> None:
        with self.session_factory() as db:
            row = db.get(SelectedRoleRecord, device_key)
            if row is not None:
                db.delete(row)
                db.commit()

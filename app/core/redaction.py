from __future__ import annotations

from app.core.hashing import sha256_hex
from app.core.phone import mask


def phone_log_fields(phone: str | None) -> dict:
    """Fields for `extra=` on log records: masked number plus a short stable digest."""
    if not phone:
        return {"phone": None}
    return {"phone": mask(phone), "phone_hash": sha256_hex(phone)[:12]}

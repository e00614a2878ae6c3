from __future__ import annotations

import hashlib
import hmac


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def otp_digest(secret: str, phone: str, code: str) -> str:
    # Bound to the phone so a leaked digest cannot be replayed for another number
    msg = f"{phone}:{code}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def digests_match(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))

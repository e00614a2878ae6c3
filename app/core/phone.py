# app/core/phone.py
"""
Phone canonicalization for the home country (default India, +91).

Stored profile phones were written by several generations of clients, so
lookups match against a set of equivalent spellings (see `variations`).
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Set

from app.core.config import get_settings
from app.core.errors import MalformedPhone

_NON_DIGIT = re.compile(r"\D")


@dataclass(frozen=True)
class PhoneNormalizer:
    country_code: str = "91"
    national_length: int = 10
    min_digits: int = 7

    def _clean(self, raw: str) -> tuple[bool, str]:
        if raw is None or not isinstance(raw, str):
            raise MalformedPhone("Phone number is required.")
        s = raw.strip()
        plus = s.startswith("+")
        digits = _NON_DIGIT.sub("", s)
        # international dialing prefix
        if not plus and digits.startswith("00") and len(digits) > self.national_length + 1:
            plus = True
            digits = digits[2:]
        if len(digits) < self.min_digits:
            raise MalformedPhone(f"Phone number must contain at least {self.min_digits} digits.")
        return plus, digits

    def _national(self, plus: bool, digits: str) -> Optional[str]:
        """Home-country national number, or None for a foreign number."""
        cc, n = self.country_code, self.national_length
        if not plus:
            if len(digits) == n:
                return digits
            if len(digits) == n + 1 and digits.startswith("0"):
                return digits[1:]
        if len(digits) == len(cc) + n and digits.startswith(cc):
            return digits[len(cc):]
        return None

    def normalize(self, raw: str) -> str:
        plus, digits = self._clean(raw)
        national = self._national(plus, digits)
        if national is None:
            return f"+{digits}"
        return f"+{self.country_code}{national}"

    def variations(self, raw: str) -> Set[str]:
        canonical = self.normalize(raw)
        out = {canonical}
        plus, digits = self._clean(raw)
        national = self._national(plus, digits)
        if national is not None:
            out |= {national, f"0{national}", f"{self.country_code}{national}"}
        else:
            out.add(canonical[1:])
        # legacy rows sometimes hold the raw input verbatim (minus whitespace)
        out.add(re.sub(r"\s+", "", raw))
        return out

    def national_number(self, raw: str) -> Optional[str]:
        plus, digits = self._clean(raw)
        return self._national(plus, digits)

    def format_for_display(self, raw: str) -> str:
        """`+91 98765 43210` for home numbers; canonical form otherwise."""
        national = self.national_number(raw)
        if national is None or len(national) != 10:
            return self.normalize(raw)
        return f"+{self.country_code} {national[:5]} {national[5:]}"


def mask(phone: str) -> str:
    """Log-safe form: keeps the country code and last two digits."""
    if not phone:
        return ""
    if len(phone) <= 6:
        return "*" * len(phone)
    return phone[:3] + "*" * (len(phone) - 5) + phone[-2:]


def get_normalizer() -> PhoneNormalizer:
    settings = get_settings()
    return PhoneNormalizer(
        country_code=settings.home_country_code,
        national_length=settings.national_number_length,
        min_digits=settings.min_phone_digits,
    )


def normalize(raw: str) -> str:
    return get_normalizer().normalize(raw)


def variations(raw: str) -> Set[str]:
    return get_normalizer().variations(raw)

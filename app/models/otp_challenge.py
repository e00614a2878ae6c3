# app/models/otp_challenge.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class OtpChallengeRecord(Base):
    """
    Active OTP challenge per canonical phone. At most one row per phone;
    issuing a new challenge overwrites it, verification deletes it.
    """

    __tablename__ = "otp_challenges"

    phone: Mapped[str] = mapped_column(String(20), primary_key=True)

    code_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resend_available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    attempts_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_code_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

# src/vericred_gate/models/rate_limit.py
"""Models supporting request rate limiting."""

from datetime import datetime

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from vericred_gate.db.session import Base
from vericred_gate.db.types import UTCDateTime


class RateLimitEntry(Base):
    """Per-key request counter for the current window.

    `count` is reset to 1 rather than incremented once `reset_at` has passed.
    """

    __tablename__ = "rate_limit_entry"

    # "<scope>:<identity>", e.g. "address:0xabc..." or "ip:203.0.113.7".
    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    reset_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

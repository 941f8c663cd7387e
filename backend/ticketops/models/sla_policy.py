from __future__ import annotations
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Boolean, DateTime, text
from .authz import Base


class SlaPolicy(Base):
    __tablename__ = 'sla_policies'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    policy_name: Mapped[str] = mapped_column(String(100), nullable=False)
    priority: Mapped[str] = mapped_column(String(4), nullable=False, index=True)
    response_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    restore_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    escalation_level1_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalation_level2_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

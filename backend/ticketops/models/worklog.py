from __future__ import annotations
from typing import Optional
from datetime import datetime, date
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, ForeignKey, DateTime, Date, Text, UniqueConstraint, text
from .authz import Base


class WorkLog(Base):
    """One row per user per (UTC) day; the entries hang off it."""
    __tablename__ = 'work_logs'
    __table_args__ = (UniqueConstraint('user_id', 'log_date', name='uq_work_logs_user_day'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)
    log_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    daily_summary: Mapped[Optional[str]] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    entries = relationship('WorkLogEntry', back_populates='work_log', order_by='WorkLogEntry.id',
                           cascade='all, delete-orphan')


class WorkLogEntry(Base):
    __tablename__ = 'work_log_entries'
    TYPE_AUTO = 'auto'
    TYPE_MANUAL = 'manual'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    work_log_id: Mapped[int] = mapped_column(ForeignKey('work_logs.id', ondelete='CASCADE'), nullable=False, index=True)
    entry_type: Mapped[str] = mapped_column(String(8), nullable=False, default=TYPE_AUTO)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    ticket_id: Mapped[Optional[int]] = mapped_column(ForeignKey('tickets.id'))
    site_id: Mapped[Optional[int]] = mapped_column(ForeignKey('sites.id'))
    police_station: Mapped[Optional[str]] = mapped_column(String(150))
    ref_type: Mapped[Optional[str]] = mapped_column(String(32))
    ref_id: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    work_log = relationship('WorkLog', back_populates='entries')

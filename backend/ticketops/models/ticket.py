from __future__ import annotations
from typing import Optional
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Boolean, ForeignKey, DateTime, Text, text
from .authz import Base


class Ticket(Base):
    __tablename__ = 'tickets'
    STATUS_OPEN = 'Open'
    STATUS_ASSIGNED = 'Assigned'
    STATUS_ACKNOWLEDGED = 'Acknowledged'
    STATUS_IN_PROGRESS = 'InProgress'
    STATUS_ON_HOLD = 'OnHold'
    STATUS_ESCALATED = 'Escalated'
    STATUS_RESOLVED = 'Resolved'
    STATUS_RESOLUTION_REJECTED = 'ResolutionRejected'
    STATUS_VERIFIED = 'Verified'
    STATUS_CLOSED = 'Closed'
    STATUS_CANCELLED = 'Cancelled'
    ALL_STATUSES = (STATUS_OPEN, STATUS_ASSIGNED, STATUS_ACKNOWLEDGED, STATUS_IN_PROGRESS, STATUS_ON_HOLD,
                    STATUS_ESCALATED, STATUS_RESOLVED, STATUS_RESOLUTION_REJECTED, STATUS_VERIFIED,
                    STATUS_CLOSED, STATUS_CANCELLED)
    TERMINAL_STATUSES = (STATUS_CLOSED, STATUS_CANCELLED)
    MAX_ESCALATION_LEVEL = 3

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sub_category: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_OPEN, index=True)
    impact: Mapped[int] = mapped_column(Integer, nullable=False)
    urgency: Mapped[int] = mapped_column(Integer, nullable=False)
    priority_score: Mapped[int] = mapped_column(Integer, nullable=False)
    priority: Mapped[str] = mapped_column(String(4), nullable=False, index=True)
    asset_id: Mapped[Optional[int]] = mapped_column(ForeignKey('assets.id'), index=True)
    site_id: Mapped[int] = mapped_column(ForeignKey('sites.id'), nullable=False, index=True)
    created_by: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    assigned_to: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), index=True)
    assigned_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    acknowledged_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    resolved_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    verified_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    verified_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'))
    closed_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    reopened_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    root_cause: Mapped[Optional[str]] = mapped_column(Text)
    resolution_summary: Mapped[Optional[str]] = mapped_column(Text)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    escalation_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalation_reason: Mapped[Optional[str]] = mapped_column(Text)
    escalated_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    escalation_accepted_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'))
    escalation_accepted_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sla_policy_id: Mapped[Optional[int]] = mapped_column(ForeignKey('sla_policies.id'))
    sla_response_due: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    sla_restore_due: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    is_sla_response_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_sla_restore_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))


class TicketActivity(Base):
    """Append-only comment/audit trail for a ticket."""
    __tablename__ = 'ticket_activities'
    TYPE_COMMENT = 'Comment'
    TYPE_STATUS_CHANGE = 'StatusChange'
    TYPE_ASSIGNMENT = 'Assignment'
    TYPE_ESCALATION = 'Escalation'
    TYPE_RESOLUTION = 'Resolution'
    TYPE_ATTACHMENT = 'Attachment'
    TYPE_RMA = 'RMA'
    ALL_TYPES = (TYPE_COMMENT, TYPE_STATUS_CHANGE, TYPE_ASSIGNMENT, TYPE_ESCALATION, TYPE_RESOLUTION,
                 TYPE_ATTACHMENT, TYPE_RMA)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    activity_type: Mapped[str] = mapped_column(String(32), nullable=False, default=TYPE_COMMENT)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    old_status: Mapped[Optional[str]] = mapped_column(String(32))
    new_status: Mapped[Optional[str]] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

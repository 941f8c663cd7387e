from __future__ import annotations
from typing import Optional, Dict, Any
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, ForeignKey, DateTime, Text, JSON, text
from .authz import Base


class AssetUpdateRequest(Base):
    """Engineer-proposed device details for an RMA install, applied once an approver signs off."""
    __tablename__ = 'asset_update_requests'
    STATUS_PENDING = 'Pending'
    STATUS_APPROVED = 'Approved'
    STATUS_REJECTED = 'Rejected'
    STATUS_EXPIRED = 'Expired'
    ALL_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED, STATUS_EXPIRED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rma_id: Mapped[int] = mapped_column(ForeignKey('rma_requests.id'), nullable=False, index=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey('tickets.id'), nullable=False, index=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey('assets.id'), nullable=False, index=True)
    requested_by: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING, index=True)
    # a proposed password is held as Fernet ciphertext under 'password_encrypted'
    proposed_changes: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    original_values: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    access_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    access_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

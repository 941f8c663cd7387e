from __future__ import annotations
from typing import Optional
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, ForeignKey, DateTime, Text, text
from .authz import Base


class Requisition(Base):
    """Request for spare stock, either raised from a ticket or backing an RMA replacement."""
    __tablename__ = 'requisitions'
    STATUS_PENDING = 'Pending'
    STATUS_APPROVED = 'Approved'
    STATUS_IN_TRANSIT = 'InTransit'
    STATUS_FULFILLED = 'Fulfilled'
    STATUS_REJECTED = 'Rejected'
    STATUS_CANCELLED = 'Cancelled'
    ALL_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_IN_TRANSIT, STATUS_FULFILLED,
                    STATUS_REJECTED, STATUS_CANCELLED)

    TYPE_STOCK_REQUEST = 'StockRequest'
    TYPE_RMA_TRANSFER = 'RMATransfer'
    ALL_TYPES = (TYPE_STOCK_REQUEST, TYPE_RMA_TRANSFER)
    NUMBER_PREFIXES = {TYPE_STOCK_REQUEST: 'REQ', TYPE_RMA_TRANSFER: 'RMT'}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    requisition_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    requisition_type: Mapped[str] = mapped_column(String(24), nullable=False, default=TYPE_STOCK_REQUEST, index=True)
    ticket_id: Mapped[Optional[int]] = mapped_column(ForeignKey('tickets.id'), index=True)
    rma_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    asset_type: Mapped[Optional[str]] = mapped_column(String(50))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    source_site_id: Mapped[Optional[int]] = mapped_column(ForeignKey('sites.id'))
    destination_site_id: Mapped[int] = mapped_column(ForeignKey('sites.id'), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING, index=True)
    requested_by: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'))
    approved_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    fulfilled_asset_id: Mapped[Optional[int]] = mapped_column(ForeignKey('assets.id'))
    fulfilled_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    comments: Mapped[Optional[str]] = mapped_column(Text)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

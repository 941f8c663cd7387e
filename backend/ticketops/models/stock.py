from __future__ import annotations
from typing import Optional, Dict, Any, List
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, ForeignKey, DateTime, Text, JSON, text
from .authz import Base


class StockTransfer(Base):
    """Batch of spare assets moved from one site's stock to another's."""
    __tablename__ = 'stock_transfers'
    STATUS_PENDING = 'Pending'
    STATUS_IN_TRANSIT = 'InTransit'
    STATUS_COMPLETED = 'Completed'
    STATUS_CANCELLED = 'Cancelled'
    ALL_STATUSES = (STATUS_PENDING, STATUS_IN_TRANSIT, STATUS_COMPLETED, STATUS_CANCELLED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    transfer_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    source_site_id: Mapped[int] = mapped_column(ForeignKey('sites.id'), nullable=False, index=True)
    destination_site_id: Mapped[int] = mapped_column(ForeignKey('sites.id'), nullable=False, index=True)
    asset_ids: Mapped[List[int]] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING, index=True)
    initiated_by: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    dispatched_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'))
    dispatched_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    received_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'))
    received_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    logistics: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))


class StockMovement(Base):
    """Append-only log of spare stock moving between sites or changing status."""
    __tablename__ = 'stock_movements'
    TYPE_TRANSFER = 'Transfer'
    TYPE_REQUISITION_FULFILLED = 'RequisitionFulfilled'
    TYPE_REPAIRED_RETURN = 'RepairedReturn'
    ALL_TYPES = (TYPE_TRANSFER, TYPE_REQUISITION_FULFILLED, TYPE_REPAIRED_RETURN)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey('assets.id'), nullable=False, index=True)
    movement_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    from_site_id: Mapped[Optional[int]] = mapped_column(ForeignKey('sites.id'), index=True)
    to_site_id: Mapped[Optional[int]] = mapped_column(ForeignKey('sites.id'), index=True)
    from_status: Mapped[Optional[str]] = mapped_column(String(32))
    to_status: Mapped[Optional[str]] = mapped_column(String(32))
    performed_by: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    ticket_id: Mapped[Optional[int]] = mapped_column(ForeignKey('tickets.id'))
    rma_id: Mapped[Optional[int]] = mapped_column(ForeignKey('rma_requests.id'))
    requisition_id: Mapped[Optional[int]] = mapped_column(ForeignKey('requisitions.id'))
    transfer_id: Mapped[Optional[int]] = mapped_column(ForeignKey('stock_transfers.id'))
    # asset_code / asset_type / serial_number as they were when the unit moved
    asset_snapshot: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

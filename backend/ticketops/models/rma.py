from __future__ import annotations
from typing import Optional, Dict, Any
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, ForeignKey, DateTime, Text, JSON, text
from .authz import Base


class RmaRequest(Base):
    __tablename__ = 'rma_requests'
    TYPE_REPAIR_ONLY = 'RepairOnly'
    TYPE_REPAIR_AND_REPLACE = 'RepairAndReplace'
    ALL_TYPES = (TYPE_REPAIR_ONLY, TYPE_REPAIR_AND_REPLACE)

    STATUS_REQUESTED = 'Requested'
    STATUS_APPROVED = 'Approved'
    STATUS_REJECTED = 'Rejected'
    STATUS_SENT_TO_HO = 'SentToHO'
    STATUS_SENT_TO_SERVICE_CENTER = 'SentToServiceCenter'
    STATUS_RECEIVED_AT_HO = 'ReceivedAtHO'
    STATUS_SENT_FOR_REPAIR_FROM_HO = 'SentForRepairFromHO'
    STATUS_ITEM_REPAIRED_AT_HO = 'ItemRepairedAtHO'
    STATUS_RETURN_SHIPPED_TO_SITE = 'ReturnShippedToSite'
    STATUS_RECEIVED_AT_SITE = 'ReceivedAtSite'
    STATUS_INSTALLED = 'Installed'
    STATUS_TRANSFERRED_TO_HO_STOCK = 'TransferredToHOStock'
    STATUS_REPLACEMENT_REQUISITION_RAISED = 'ReplacementRequisitionRaised'
    STATUS_REPLACEMENT_DISPATCHED = 'ReplacementDispatched'
    STATUS_REPLACEMENT_RECEIVED_AT_SITE = 'ReplacementReceivedAtSite'
    ALL_STATUSES = (STATUS_REQUESTED, STATUS_APPROVED, STATUS_REJECTED, STATUS_SENT_TO_HO,
                    STATUS_SENT_TO_SERVICE_CENTER, STATUS_RECEIVED_AT_HO, STATUS_SENT_FOR_REPAIR_FROM_HO,
                    STATUS_ITEM_REPAIRED_AT_HO, STATUS_RETURN_SHIPPED_TO_SITE, STATUS_RECEIVED_AT_SITE,
                    STATUS_INSTALLED, STATUS_TRANSFERRED_TO_HO_STOCK, STATUS_REPLACEMENT_REQUISITION_RAISED,
                    STATUS_REPLACEMENT_DISPATCHED, STATUS_REPLACEMENT_RECEIVED_AT_SITE)
    FINAL_STATUSES = (STATUS_INSTALLED, STATUS_REJECTED, STATUS_TRANSFERRED_TO_HO_STOCK)

    ROUTE_TO_HO = 'ToHO'
    ROUTE_DIRECT_TO_SERVICE_CENTER = 'DirectToServiceCenter'
    ALL_ROUTES = (ROUTE_TO_HO, ROUTE_DIRECT_TO_SERVICE_CENTER)

    DEST_BACK_TO_SITE = 'BackToSite'
    DEST_HO_STOCK = 'HOStock'
    DEST_OTHER_SITE = 'OtherSite'
    ALL_DESTINATIONS = (DEST_BACK_TO_SITE, DEST_HO_STOCK, DEST_OTHER_SITE)

    SOURCE_HO_STOCK = 'HOStock'
    SOURCE_SITE_STOCK = 'SiteStock'
    SOURCE_MARKET = 'Market'
    ALL_STOCK_SOURCES = (SOURCE_HO_STOCK, SOURCE_SITE_STOCK, SOURCE_MARKET)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rma_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    ticket_id: Mapped[int] = mapped_column(ForeignKey('tickets.id'), nullable=False, index=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey('assets.id'), nullable=False, index=True)
    site_id: Mapped[int] = mapped_column(ForeignKey('sites.id'), nullable=False, index=True)
    rma_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False, default=STATUS_REQUESTED, index=True)
    failure_description: Mapped[Optional[str]] = mapped_column(Text)
    requested_by: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    approved_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    original_details: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    replacement_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    item_send_route: Mapped[Optional[str]] = mapped_column(String(32))
    repair_destination: Mapped[Optional[str]] = mapped_column(String(32))
    destination_site_id: Mapped[Optional[int]] = mapped_column(ForeignKey('sites.id'))
    stock_source: Mapped[Optional[str]] = mapped_column(String(32))
    source_site_id: Mapped[Optional[int]] = mapped_column(ForeignKey('sites.id'))
    requisition_id: Mapped[Optional[int]] = mapped_column(ForeignKey('requisitions.id'))
    # latest carrier / tracking_number, full history lives in rma_events
    logistics: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    created_on: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    installed_on: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    @property
    def is_active(self) -> bool:
        return self.status not in self.FINAL_STATUSES


class RmaEvent(Base):
    __tablename__ = 'rma_events'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rma_id: Mapped[int] = mapped_column(ForeignKey('rma_requests.id', ondelete='CASCADE'), nullable=False, index=True)
    step: Mapped[str] = mapped_column(String(40), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(40))
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    actor_user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    logistics: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

from __future__ import annotations
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Boolean, ForeignKey, DateTime, text
from .authz import Base


class Asset(Base):
    __tablename__ = 'assets'
    # Status constants
    STATUS_OPERATIONAL = 'Operational'
    STATUS_FAULTY = 'Faulty'
    STATUS_UNDER_MAINTENANCE = 'Under Maintenance'
    STATUS_IN_REPAIR = 'In Repair'
    STATUS_IN_TRANSIT = 'In Transit'
    STATUS_SPARE = 'Spare'
    STATUS_RESERVED = 'Reserved'
    STATUS_DECOMMISSIONED = 'Decommissioned'
    ALL_STATUSES = (STATUS_OPERATIONAL, STATUS_FAULTY, STATUS_UNDER_MAINTENANCE, STATUS_IN_REPAIR,
                    STATUS_IN_TRANSIT, STATUS_SPARE, STATUS_RESERVED, STATUS_DECOMMISSIONED)
    CRITICALITY_VALUES = (1, 2, 3)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    asset_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    asset_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    device_type: Mapped[Optional[str]] = mapped_column(String(100))
    site_id: Mapped[int] = mapped_column(ForeignKey('sites.id'), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_OPERATIONAL, index=True)
    criticality: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    make: Mapped[Optional[str]] = mapped_column(String(100))
    model: Mapped[Optional[str]] = mapped_column(String(150))
    serial_number: Mapped[Optional[str]] = mapped_column(String(100))
    mac: Mapped[Optional[str]] = mapped_column(String(50))
    ip_address: Mapped[Optional[str]] = mapped_column(String(50))
    location_name: Mapped[Optional[str]] = mapped_column(String(150))
    location_description: Mapped[Optional[str]] = mapped_column(String(200))
    stock_location: Mapped[Optional[str]] = mapped_column(String(100))
    username: Mapped[Optional[str]] = mapped_column(String(100))
    # Fernet ciphertext, see utils.security
    password_encrypted: Mapped[Optional[str]] = mapped_column(String(1024))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

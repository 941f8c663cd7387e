from __future__ import annotations
from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, ForeignKey, JSON, DateTime, text
from typing import Optional, Dict, Any, List

Base = declarative_base()


class User(Base):
    __tablename__ = 'users'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    mobile_number: Mapped[Optional[str]] = mapped_column(String(32))
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # {"allow": [site ids]}; empty / missing means every site
    site_scope: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    rights = relationship('UserRight', back_populates='user', uselist=False, cascade='all, delete-orphan')
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    def set_password(self, raw: str):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(raw)

    def verify_password(self, raw: str) -> bool:
        from werkzeug.security import check_password_hash
        return check_password_hash(self.password_hash, raw)

    def site_ids(self) -> List[int]:
        scope = self.site_scope or {}
        allow = scope.get('allow') if isinstance(scope, dict) else None
        if not isinstance(allow, list):
            return []
        return sorted({s for s in allow if isinstance(s, int)})


class UserRight(Base):
    """Per-user permission grants layered on top of the role preset."""
    __tablename__ = 'user_rights'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), unique=True, nullable=False)
    rights: Mapped[List[str]] = mapped_column(JSON, default=list)
    user = relationship('User', back_populates='rights')
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

"""
MAILDECK - SQLAlchemy ORM Models

Tables the bootstrap touches: settings (legacy schema version), the sharing
tables that feed the permission rebuild, and reports.
"""
from datetime import datetime
from typing import List, Optional
import enum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class ReportState(enum.Enum):
    """Report processing state."""
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    FINISHED = "finished"
    FAILED = "failed"


class Setting(Base):
    """Key/value settings; `db_schema_version` identifies pre-alembic databases."""
    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    key: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    value: Mapped[str] = mapped_column(Text, default="")

    def __repr__(self) -> str:
        return f"<Setting {self.key}={self.value!r}>"


class User(Base):
    """Application user with a global role."""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), default="")
    role: Mapped[str] = mapped_column(String(64), default="nobody")
    namespace_id: Mapped[Optional[int]] = mapped_column(ForeignKey("namespaces.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    def __repr__(self) -> str:
        return f"<User {self.username} ({self.role})>"


class Namespace(Base):
    """Namespace tree; the root namespace has no parent."""
    __tablename__ = "namespaces"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="")
    parent_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("namespaces.id", ondelete="CASCADE"), nullable=True, index=True
    )

    children: Mapped[List["Namespace"]] = relationship(back_populates="parent")
    parent: Mapped[Optional["Namespace"]] = relationship(back_populates="children", remote_side=[id])

    def __repr__(self) -> str:
        return f"<Namespace {self.id}: {self.name}>"


class Share(Base):
    """A role granted to a user on one entity."""
    __tablename__ = "shares"

    id: Mapped[int] = mapped_column(primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(32))
    entity_id: Mapped[int] = mapped_column(Integer)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    role: Mapped[str] = mapped_column(String(64))
    auto: Mapped[bool] = mapped_column(default=False)

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "user_id", name="uq_shares_entity_user"),
        Index("ix_shares_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Share {self.entity_type}:{self.entity_id} user={self.user_id} role={self.role}>"


class GeneratedRoleName(Base):
    """Role names from the configured role table, regenerated at startup."""
    __tablename__ = "generated_role_names"

    id: Mapped[int] = mapped_column(primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(32))
    role: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="")

    __table_args__ = (
        UniqueConstraint("entity_type", "role", name="uq_generated_role_names"),
    )


class Permission(Base):
    """Effective (derived) permission of a user on an entity."""
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(32))
    entity_id: Mapped[int] = mapped_column(Integer)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    operation: Mapped[str] = mapped_column(String(64))

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "user_id", "operation", name="uq_permissions"),
        Index("ix_permissions_lookup", "entity_type", "user_id"),
    )


class Report(Base):
    """Generated report; processing state survives restarts."""
    __tablename__ = "reports"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    namespace_id: Mapped[Optional[int]] = mapped_column(ForeignKey("namespaces.id"), nullable=True)
    state: Mapped[str] = mapped_column(String(32), default=ReportState.SCHEDULED.value, index=True)
    last_run: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    def __repr__(self) -> str:
        return f"<Report {self.id}: {self.name} [{self.state}]>"

"""
SQLAlchemy ORM models for persistent storage.

Live catalog tables and their shadow (staging) twins share one column
layout through mixins, so a swap is a plain INSERT ... SELECT between them.
"""

import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

from catalogsync.config import DEFAULT_PROVIDER


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# --- Catalog column layouts ---


class SetColumns:
    """Columns shared by the live and shadow set tables."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game: Mapped[str] = mapped_column(String(50), index=True)
    provider: Mapped[str] = mapped_column(String(50), default=DEFAULT_PROVIDER)
    set_id: Mapped[str] = mapped_column(String(255))
    provider_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    series: Mapped[str | None] = mapped_column(String(255), nullable=True)
    printed_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    sync_status: Mapped[str] = mapped_column(String(20), default="pending")
    card_count: Mapped[int] = mapped_column(Integer, default=0)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    images: Mapped[Any] = mapped_column(JSON, nullable=True)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @declared_attr.directive
    def __table_args__(cls) -> tuple[Any, ...]:
        return (UniqueConstraint("game", "provider", "set_id", name=f"uq_{cls.__tablename__}_key"),)


class CardColumns:
    """Columns shared by the live and shadow card tables."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game: Mapped[str] = mapped_column(String(50), index=True)
    provider: Mapped[str] = mapped_column(String(50), default=DEFAULT_PROVIDER)
    card_id: Mapped[str] = mapped_column(String(255))
    provider_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Logical reference to the set's local set_id within the same game
    set_id: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rarity: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supertype: Mapped[str | None] = mapped_column(String(100), nullable=True)
    subtypes: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    tcgplayer_product_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    images: Mapped[Any] = mapped_column(JSON, nullable=True)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @declared_attr.directive
    def __table_args__(cls) -> tuple[Any, ...]:
        return (UniqueConstraint("game", "provider", "card_id", name=f"uq_{cls.__tablename__}_key"),)


class VariantColumns:
    """Columns shared by the live and shadow variant tables."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game: Mapped[str] = mapped_column(String(50), index=True)
    provider: Mapped[str] = mapped_column(String(50), default=DEFAULT_PROVIDER)
    variant_key: Mapped[str] = mapped_column(String(500))
    provider_variant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    card_id: Mapped[str] = mapped_column(String(255), index=True)
    printing: Mapped[str | None] = mapped_column(String(100), nullable=True)
    condition: Mapped[str | None] = mapped_column(String(100), nullable=True)
    language: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sku: Mapped[str | None] = mapped_column(String(255), nullable=True)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    market_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    low_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    mid_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    high_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str] = mapped_column(String(10), default="USD")
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @declared_attr.directive
    def __table_args__(cls) -> tuple[Any, ...]:
        return (
            UniqueConstraint("game", "provider", "variant_key", name=f"uq_{cls.__tablename__}_key"),
        )


# --- Live catalog ---


class CatalogSetDB(SetColumns, Base):
    """A set visible to catalog consumers."""

    __tablename__ = "catalog_sets"

    def __repr__(self) -> str:
        return f"<CatalogSetDB(game={self.game}, set_id={self.set_id})>"


class CatalogCardDB(CardColumns, Base):
    """A card visible to catalog consumers."""

    __tablename__ = "catalog_cards"

    def __repr__(self) -> str:
        return f"<CatalogCardDB(game={self.game}, card_id={self.card_id})>"


class CatalogVariantDB(VariantColumns, Base):
    """A priced variant visible to catalog consumers."""

    __tablename__ = "catalog_variants"

    def __repr__(self) -> str:
        return f"<CatalogVariantDB(game={self.game}, variant_key={self.variant_key})>"


# --- Shadow catalog (rebuild staging) ---


class ShadowSetDB(SetColumns, Base):
    __tablename__ = "catalog_sets_shadow"


class ShadowCardDB(CardColumns, Base):
    __tablename__ = "catalog_cards_shadow"


class ShadowVariantDB(VariantColumns, Base):
    __tablename__ = "catalog_variants_shadow"


# --- Work tracking ---


def _new_job_id() -> str:
    return str(uuid.uuid4())


class SyncJobDB(Base):
    """
    Audit and progress record for one unit or phase of sync work.

    Created queued, moved to running when claimed, and finished in one of
    completed, failed, partial or cancelled.
    """

    __tablename__ = "sync_jobs"
    __table_args__ = (Index("ix_sync_jobs_scope_status", "game", "set_id", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_job_id)
    job_type: Mapped[str] = mapped_column(String(20), index=True)
    source: Mapped[str] = mapped_column(String(50), default=DEFAULT_PROVIDER)
    game: Mapped[str | None] = mapped_column(String(50), nullable=True)
    set_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="queued")

    total_items: Mapped[int] = mapped_column(Integer, default=0)
    processed_items: Mapped[int] = mapped_column(Integer, default=0)
    progress_percentage: Mapped[float] = mapped_column(Float, default=0.0)

    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    results: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    metrics: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<SyncJobDB(id={self.id}, type={self.job_type}, status={self.status})>"


class QueueEntryDB(Base):
    """
    A durable work item: sync one provider set for a game.

    Only one queued or in-progress entry may exist per (mode, game, set_id).
    """

    __tablename__ = "sync_queue"
    __table_args__ = (
        Index(
            "uq_sync_queue_active_scope",
            "mode",
            "game",
            "set_id",
            unique=True,
            postgresql_where=text("status IN ('queued', 'in_progress')"),
            sqlite_where=text("status IN ('queued', 'in_progress')"),
        ),
        Index("ix_sync_queue_mode_status", "mode", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mode: Mapped[str] = mapped_column(String(50))
    game: Mapped[str] = mapped_column(String(50))
    set_id: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="queued")
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Identifies the drain invocation that claimed the entry
    claim_token: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<QueueEntryDB(id={self.id}, game={self.game}, set_id={self.set_id})>"

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from mathsolver.schemas import ProviderKind


class Base(DeclarativeBase):
    pass


def _new_token_id() -> str:
    return str(uuid.uuid4())


class ProviderRecord(Base):
    __tablename__ = "ai_providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[ProviderKind] = mapped_column(Enum(ProviderKind), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    selected_model: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    available_models: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    api_endpoint: Mapped[str] = mapped_column(Text, nullable=False, default="")
    total_usage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.now, onupdate=datetime.now
    )

    tokens: Mapped[list["TokenRecord"]] = relationship(
        back_populates="provider",
        order_by="TokenRecord.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class TokenRecord(Base):
    __tablename__ = "ai_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_token_id)
    provider_id: Mapped[int] = mapped_column(
        ForeignKey("ai_providers.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    key: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    daily_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    used_today: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    provider: Mapped[ProviderRecord] = relationship(back_populates="tokens")

    __table_args__ = (Index("ix_ai_tokens_provider_position", "provider_id", "position"),)

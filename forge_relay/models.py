"""
SQLAlchemy models for the credential ledgers. One append-only table per channel.
"""
from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Token(Base):
    """Legacy channel (/forge-token): the bare credential."""
    __tablename__ = "tokens"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    token_value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class TokenNext(Base):
    """Successor channel (/forge-token-2): credential plus routing fields decoded from its claims."""
    __tablename__ = "tokens_next"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    token_value: Mapped[str] = mapped_column(Text, nullable=False, default="")
    installation_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    api_base_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    app_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    environment_type: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    environment_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

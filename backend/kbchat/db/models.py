from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kbchat.db.base import Base
from kbchat.utils.time_utils import utc_now


class KbDocument(Base):
    """Knowledge-base document with its embedding vector."""

    __tablename__ = "kb_documents"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    doc_type: Mapped[str] = mapped_column(String, nullable=False, default="doc")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    embed_provider: Mapped[str] = mapped_column(String, nullable=False)
    embed_model: Mapped[str] = mapped_column(String, nullable=False)
    dim: Mapped[int] = mapped_column(Integer, nullable=False)
    vector_json: Mapped[str] = mapped_column(Text, nullable=False)
    vector_norm: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)


class KvList(Base):
    """Head row of a key-value list; carries the key's expiry."""

    __tablename__ = "kv_lists"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    # Epoch seconds; NULL means the key never expires.
    expires_at: Mapped[Optional[float]] = mapped_column(Float, nullable=True)


class KvListItem(Base):
    """One value in a key-value list; ``id`` order is list order."""

    __tablename__ = "kv_list_items"
    __table_args__ = (Index("ix_kv_list_items_key_id", "key", "id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(
        String, ForeignKey("kv_lists.key", ondelete="CASCADE"), nullable=False
    )
    value: Mapped[str] = mapped_column(Text, nullable=False)


class ChatLog(Base):
    """Audit record of one answered question."""

    __tablename__ = "chat_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    model: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    answer: Mapped[str] = mapped_column(Text, nullable=False, default="")
    documents_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.portal.models import Base


class Stream(Base):
    """A student's subject track. Users and subject content point at one."""

    __tablename__ = "streams"
    __table_args__ = (
        Index("idx_streams_vocabulary_name", "vocabulary", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    vocabulary: Mapped[str] = mapped_column(String(64), nullable=False, default="stream")
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    content_items: Mapped[list["ContentItem"]] = relationship(
        "ContentItem",
        back_populates="stream",
        lazy="selectin",
        order_by="ContentItem.title",
    )


class ContentItem(Base):
    __tablename__ = "content_items"
    __table_args__ = (
        Index("idx_content_items_type", "content_type"),
        Index("idx_content_items_stream_id", "stream_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    content_type: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. "subjects", "page"
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    stream_id: Mapped[int | None] = mapped_column(ForeignKey("streams.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    stream: Mapped[Stream | None] = relationship("Stream", back_populates="content_items")

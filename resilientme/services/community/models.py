"""Community persistence models (posts, reaction markers, reports)."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from resilientme.common.db import Base, JsonType

VISIBLE = "visible"
HIDDEN = "hidden"


class CommunityPost(Base):
    """Anonymous post; `status` is NULL only on rows written before moderation existed."""

    __tablename__ = "community_posts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    author_id: Mapped[str] = mapped_column(String, index=True)
    category: Mapped[str] = mapped_column(String)
    content: Mapped[str] = mapped_column(String(2000))
    status: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    reports: Mapped[int] = mapped_column(Integer, default=0)
    reactions: Mapped[dict] = mapped_column(JsonType, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)


class ReactionMarker(Base):
    """At most one reaction per (owner, post)."""

    __tablename__ = "reaction_markers"

    owner_id: Mapped[str] = mapped_column(String, primary_key=True)
    post_id: Mapped[str] = mapped_column(String, primary_key=True)
    reaction: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)


class PostReport(Base):
    __tablename__ = "post_reports"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    owner_id: Mapped[str] = mapped_column(String, index=True)
    post_id: Mapped[str] = mapped_column(String, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

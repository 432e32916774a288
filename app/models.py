import enum
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


def utcnow() -> datetime:
    return datetime.now(UTC)


class Category(enum.StrEnum):
    HOME = "home"
    BEAUTY = "beauty"
    FITNESS = "fitness"
    STYLE = "style"
    OTHER = "other"


class EntryKind(enum.StrEnum):
    BEFORE = "before"
    UPDATE = "update"
    AFTER = "after"


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    title: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[Category] = mapped_column(
        Enum(Category, native_enum=False), default=Category.OTHER, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    entries: Mapped[list["Entry"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Entry.taken_at",
    )


class Entry(Base):
    __tablename__ = "entries"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), index=True, nullable=False
    )
    kind: Mapped[EntryKind] = mapped_column(
        Enum(EntryKind, native_enum=False), default=EntryKind.UPDATE, nullable=False
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Private bucket key; written once when the entry is created
    media_path: Mapped[str | None] = mapped_column(String, nullable=True)
    taken_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    project: Mapped[Project] = relationship(back_populates="entries")


class Share(Base):
    __tablename__ = "shares"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    entry_id: Mapped[int | None] = mapped_column(
        ForeignKey("entries.id", ondelete="SET NULL"), nullable=True
    )
    caption: Mapped[str | None] = mapped_column(String(160), nullable=True)
    # Community bucket key of the republished copy, never the private original
    media_path: Mapped[str] = mapped_column(String, nullable=False)
    slug: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    attribution_name: Mapped[str | None] = mapped_column(String, nullable=True)
    attribution_url: Mapped[str | None] = mapped_column(String, nullable=True)
    show_attribution: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True, nullable=False
    )


class BeforeAfterPair(Base):
    __tablename__ = "before_after_pairs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    caption: Mapped[str | None] = mapped_column(String(160), nullable=True)
    before_path: Mapped[str] = mapped_column(String, nullable=False)
    after_path: Mapped[str] = mapped_column(String, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True, nullable=False
    )

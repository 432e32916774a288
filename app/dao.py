from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import ConflictError, StoreError
from app.models import BeforeAfterPair, Category, Entry, EntryKind, Project, Share


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class _BaseDAO:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            error_message = f"Unique constraint rejected the write: {exc.orig}"
            raise ConflictError(error_message) from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            error_message = f"Data store write failed: {exc}"
            raise StoreError(error_message) from exc

    def _add(self, row: Any) -> Any:
        self.db.add(row)
        self._commit()
        self.db.refresh(row)
        return row

    def _remove(self, row: Any) -> None:
        self.db.delete(row)
        self._commit()


class ProjectDAO(_BaseDAO):
    """Data Access Object for Project."""

    def get_owned(self, project_id: int, owner_id: str) -> Project | None:
        project = self.db.get(Project, project_id)
        if project is None or project.owner_id != owner_id:
            return None
        return project

    def list_for_owner(self, owner_id: str) -> Sequence[Project]:
        stmt = (
            select(Project)
            .where(Project.owner_id == owner_id)
            .order_by(Project.created_at.desc(), Project.id.desc())
        )
        return self.db.scalars(stmt).all()

    def create(self, owner_id: str, title: str, category: Category) -> Project:
        return self._add(Project(owner_id=owner_id, title=title, category=category))


class EntryDAO(_BaseDAO):
    """Data Access Object for Entry."""

    def get_owned(self, entry_id: int, owner_id: str) -> Entry | None:
        stmt = (
            select(Entry)
            .join(Project, Entry.project_id == Project.id)
            .where(Entry.id == entry_id, Project.owner_id == owner_id)
        )
        return self.db.scalars(stmt).first()

    def list_for_project(self, project_id: int) -> Sequence[Entry]:
        stmt = (
            select(Entry)
            .where(Entry.project_id == project_id)
            .order_by(Entry.taken_at.asc(), Entry.id.asc())
        )
        return self.db.scalars(stmt).all()

    def create(
        self,
        project_id: int,
        kind: EntryKind,
        note: str | None = None,
        media_path: str | None = None,
    ) -> Entry:
        entry = Entry(project_id=project_id, kind=kind, note=note, media_path=media_path)
        return self._add(entry)

    def delete(self, entry: Entry) -> None:
        self._remove(entry)


class ShareDAO(_BaseDAO):
    """Data Access Object for Share."""

    def get_owned(self, share_id: int, user_id: str) -> Share | None:
        share = self.db.get(Share, share_id)
        if share is None or share.user_id != user_id:
            return None
        return share

    def get_public_by_slug(self, slug: str) -> Share | None:
        stmt = select(Share).where(Share.slug == slug, Share.is_public.is_(True))
        return self.db.scalars(stmt).first()

    def list_for_user(self, user_id: str) -> Sequence[Share]:
        stmt = (
            select(Share)
            .where(Share.user_id == user_id)
            .order_by(Share.created_at.desc(), Share.id.desc())
        )
        return self.db.scalars(stmt).all()

    def list_public(
        self,
        limit: int,
        filter_text: str | None = None,
        before: datetime | None = None,
    ) -> Sequence[Share]:
        stmt = select(Share).where(Share.is_public.is_(True))
        if filter_text:
            stmt = stmt.where(Share.caption.ilike(_like_pattern(filter_text), escape="\\"))
        if before is not None:
            stmt = stmt.where(Share.created_at < before)
        stmt = stmt.order_by(Share.created_at.desc(), Share.id.desc()).limit(limit)
        return self.db.scalars(stmt).all()

    def list_public_at(
        self, created_at: datetime, filter_text: str | None = None
    ) -> Sequence[Share]:
        """Every public share created at exactly this instant, unbounded."""
        stmt = select(Share).where(
            Share.is_public.is_(True), Share.created_at == created_at
        )
        if filter_text:
            stmt = stmt.where(Share.caption.ilike(_like_pattern(filter_text), escape="\\"))
        return self.db.scalars(stmt.order_by(Share.id.desc())).all()

    def create(self, **fields: Any) -> Share:
        return self._add(Share(**fields))

    def set_public(self, share: Share, is_public: bool) -> Share:  # noqa: FBT001
        share.is_public = is_public
        self._commit()
        self.db.refresh(share)
        return share

    def delete(self, share: Share) -> None:
        self._remove(share)


class PairDAO(_BaseDAO):
    """Data Access Object for BeforeAfterPair."""

    def get_owned(self, pair_id: int, user_id: str) -> BeforeAfterPair | None:
        pair = self.db.get(BeforeAfterPair, pair_id)
        if pair is None or pair.user_id != user_id:
            return None
        return pair

    def get_public(self, pair_id: int) -> BeforeAfterPair | None:
        stmt = select(BeforeAfterPair).where(
            BeforeAfterPair.id == pair_id, BeforeAfterPair.is_public.is_(True)
        )
        return self.db.scalars(stmt).first()

    def list_public(
        self,
        limit: int,
        filter_text: str | None = None,
        before: datetime | None = None,
    ) -> Sequence[BeforeAfterPair]:
        stmt = select(BeforeAfterPair).where(BeforeAfterPair.is_public.is_(True))
        if filter_text:
            stmt = stmt.where(
                BeforeAfterPair.caption.ilike(_like_pattern(filter_text), escape="\\")
            )
        if before is not None:
            stmt = stmt.where(BeforeAfterPair.created_at < before)
        stmt = stmt.order_by(
            BeforeAfterPair.created_at.desc(), BeforeAfterPair.id.desc()
        ).limit(limit)
        return self.db.scalars(stmt).all()

    def list_public_at(
        self, created_at: datetime, filter_text: str | None = None
    ) -> Sequence[BeforeAfterPair]:
        stmt = select(BeforeAfterPair).where(
            BeforeAfterPair.is_public.is_(True), BeforeAfterPair.created_at == created_at
        )
        if filter_text:
            stmt = stmt.where(
                BeforeAfterPair.caption.ilike(_like_pattern(filter_text), escape="\\")
            )
        return self.db.scalars(stmt.order_by(BeforeAfterPair.id.desc())).all()

    def create(self, **fields: Any) -> BeforeAfterPair:
        return self._add(BeforeAfterPair(**fields))

    def delete(self, pair: BeforeAfterPair) -> None:
        self._remove(pair)

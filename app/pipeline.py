"""
Publishing pipeline: moves images between the private and public buckets
and keeps database rows consistent with the objects they point at.

There is no transaction spanning the data store and object storage, so
consistency rests on ordering alone:

  * objects are uploaded before the row that references them is inserted;
  * objects are removed before the row that references them is deleted.

A failure between the two steps can leave an orphaned object (tolerated,
never rolled back) but never a row pointing at a missing object.

Each operation runs as an explicit state machine. Publish operations walk
validating -> normalizing -> uploading_private -> uploading_public ->
recording -> done; teardown operations walk validating -> hiding ->
removing_storage -> removing_record -> done. Either can drop into error.
"""

import enum
import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from app import paths
from app.config import (
    COMMUNITY_BUCKET,
    MAX_CAPTION_LENGTH,
    MAX_UPLOAD_BYTES,
    MEDIA_BUCKET,
    REPUBLISH_URL_TTL,
)
from app.dao import EntryDAO, PairDAO, ProjectDAO, ShareDAO
from app.errors import (
    ConflictError,
    InvalidTransition,
    NothingToShareError,
    NotFoundError,
    PipelineError,
    StorageError,
    StoreError,
    ValidationError,
)
from app.imaging import NormalizedImage, NormalizerConfig, normalize
from app.models import BeforeAfterPair, Category, Entry, EntryKind, Project, Share
from app.storage import ObjectStorage

logger = logging.getLogger(__name__)

SAFE_URL_SCHEMES = ("http", "https", "mailto")


class PublishState(enum.StrEnum):
    VALIDATING = "validating"
    NORMALIZING = "normalizing"
    UPLOADING_PRIVATE = "uploading_private"
    UPLOADING_PUBLIC = "uploading_public"
    RECORDING = "recording"
    DONE = "done"
    ERROR = "error"


class TeardownState(enum.StrEnum):
    VALIDATING = "validating"
    HIDING = "hiding"
    REMOVING_STORAGE = "removing_storage"
    REMOVING_RECORD = "removing_record"
    DONE = "done"
    ERROR = "error"


PUBLISH_TRANSITIONS: Mapping[PublishState, frozenset[PublishState]] = {
    PublishState.VALIDATING: frozenset(
        {PublishState.NORMALIZING, PublishState.UPLOADING_PUBLIC, PublishState.RECORDING}
    ),
    PublishState.NORMALIZING: frozenset({PublishState.UPLOADING_PRIVATE}),
    PublishState.UPLOADING_PRIVATE: frozenset(
        {PublishState.UPLOADING_PUBLIC, PublishState.RECORDING}
    ),
    PublishState.UPLOADING_PUBLIC: frozenset({PublishState.RECORDING}),
    PublishState.RECORDING: frozenset({PublishState.DONE}),
}

TEARDOWN_TRANSITIONS: Mapping[TeardownState, frozenset[TeardownState]] = {
    TeardownState.VALIDATING: frozenset(
        {
            TeardownState.HIDING,
            TeardownState.REMOVING_STORAGE,
            TeardownState.REMOVING_RECORD,
        }
    ),
    TeardownState.HIDING: frozenset({TeardownState.REMOVING_STORAGE, TeardownState.DONE}),
    TeardownState.REMOVING_STORAGE: frozenset(
        {TeardownState.REMOVING_RECORD, TeardownState.DONE}
    ),
    TeardownState.REMOVING_RECORD: frozenset({TeardownState.DONE}),
}


class Operation:
    """State machine for a single publish or teardown run."""

    def __init__(
        self,
        name: str,
        transitions: Mapping[Any, frozenset[Any]],
        start: enum.StrEnum,
        error: enum.StrEnum,
        observer: Callable[["Operation", enum.StrEnum], None] | None = None,
    ) -> None:
        self.name = name
        self.transitions = transitions
        self.error_state = error
        self.state = start
        self.history: list[enum.StrEnum] = [start]
        self.failed_at: enum.StrEnum | None = None
        self._observer = observer

    @property
    def finished(self) -> bool:
        return self.state not in self.transitions

    def advance(self, new_state: enum.StrEnum) -> None:
        if new_state == self.error_state:
            allowed = not self.finished
        else:
            allowed = new_state in self.transitions.get(self.state, frozenset())
        if not allowed:
            error_message = f"{self.name}: cannot move from {self.state} to {new_state}"
            raise InvalidTransition(error_message)
        logger.debug("%s: %s -> %s", self.name, self.state, new_state)
        self.state = new_state
        self.history.append(new_state)
        if self._observer is not None:
            self._observer(self, new_state)

    def fail(self) -> str:
        """Move to the error state; returns the step that failed."""
        failed_at = self.state
        self.failed_at = failed_at
        self.advance(self.error_state)
        return str(failed_at)


@dataclass(frozen=True)
class Upload:
    data: bytes
    content_type: str
    filename: str | None = None


def is_safe_url(url: str | None) -> bool:
    if not url:
        return False
    return urlparse(url).scheme.lower() in SAFE_URL_SCHEMES


def validate_upload(upload: Upload | None, label: str = "Image") -> Upload:
    if upload is None:
        error_message = f"{label} is required."
        raise ValidationError(error_message)
    if not (upload.content_type or "").lower().startswith("image/"):
        error_message = f"{label} must be an image file."
        raise ValidationError(error_message)
    if not upload.data:
        error_message = f"{label} is empty."
        raise ValidationError(error_message)
    if len(upload.data) > MAX_UPLOAD_BYTES:
        limit_mb = MAX_UPLOAD_BYTES // (1024 * 1024)
        error_message = f"{label} is larger than {limit_mb} MB."
        raise ValidationError(error_message)
    return upload


def clean_caption(caption: str | None) -> str | None:
    text = (caption or "").strip()
    if len(text) > MAX_CAPTION_LENGTH:
        error_message = f"Caption must be at most {MAX_CAPTION_LENGTH} characters."
        raise ValidationError(error_message)
    return text or None


class PublishingPipeline:
    """
    Every mutation on projects, entries, shares and pairs for one account.

    Collaborator failures are converted to PipelineError carrying the step
    that failed; validation problems raise ValidationError before any
    storage or data store call.
    """

    def __init__(
        self,
        db: Session,
        storage: ObjectStorage,
        normalizer: NormalizerConfig | None = None,
        observer: Callable[[Operation, enum.StrEnum], None] | None = None,
        media_bucket: str = MEDIA_BUCKET,
        community_bucket: str = COMMUNITY_BUCKET,
    ) -> None:
        self.projects = ProjectDAO(db)
        self.entries = EntryDAO(db)
        self.shares = ShareDAO(db)
        self.pairs = PairDAO(db)
        self.storage = storage
        self.normalizer = normalizer or NormalizerConfig()
        self.observer = observer
        self.media_bucket = media_bucket
        self.community_bucket = community_bucket
        self.last_operation: Operation | None = None

    # -- state machine plumbing -------------------------------------------

    def _publish(self, name: str) -> Operation:
        self.last_operation = Operation(
            name,
            PUBLISH_TRANSITIONS,
            PublishState.VALIDATING,
            PublishState.ERROR,
            self.observer,
        )
        return self.last_operation

    def _teardown(self, name: str) -> Operation:
        self.last_operation = Operation(
            name,
            TEARDOWN_TRANSITIONS,
            TeardownState.VALIDATING,
            TeardownState.ERROR,
            self.observer,
        )
        return self.last_operation

    @contextmanager
    def _validating(self, op: Operation) -> Iterator[None]:
        try:
            yield
        except (ValidationError, NotFoundError):
            op.fail()
            raise

    @contextmanager
    def _step(self, op: Operation, state: enum.StrEnum, action: str) -> Iterator[None]:
        op.advance(state)
        try:
            yield
        except (StorageError, StoreError) as exc:
            failed_at = op.fail()
            logger.error("%s failed while %s: %s", op.name, action, exc)
            error_message = f"Could not {action}: {exc}"
            raise PipelineError(error_message, failed_at) from exc

    def _normalize(self, upload: Upload) -> NormalizedImage:
        return normalize(upload.data, upload.content_type, self.normalizer)

    def _owned_project(self, owner_id: str, project_id: int) -> Project:
        project = self.projects.get_owned(project_id, owner_id)
        if project is None:
            error_message = "Project not found"
            raise NotFoundError(error_message)
        return project

    def _owned_entry(self, owner_id: str, entry_id: int) -> Entry:
        entry = self.entries.get_owned(entry_id, owner_id)
        if entry is None:
            error_message = "Entry not found"
            raise NotFoundError(error_message)
        return entry

    def _owned_share(self, owner_id: str, share_id: int) -> Share:
        share = self.shares.get_owned(share_id, owner_id)
        if share is None:
            error_message = "Share not found"
            raise NotFoundError(error_message)
        return share

    def _owned_pair(self, owner_id: str, pair_id: int) -> BeforeAfterPair:
        pair = self.pairs.get_owned(pair_id, owner_id)
        if pair is None:
            error_message = "Post not found"
            raise NotFoundError(error_message)
        return pair

    # -- reads for the owner's views --------------------------------------

    def list_projects(self, owner_id: str) -> Sequence[Project]:
        return self.projects.list_for_owner(owner_id)

    def get_project(self, owner_id: str, project_id: int) -> tuple[Project, Sequence[Entry]]:
        project = self._owned_project(owner_id, project_id)
        return project, self.entries.list_for_project(project.id)

    def list_shares(self, owner_id: str) -> Sequence[Share]:
        return self.shares.list_for_user(owner_id)

    # -- publish ----------------------------------------------------------

    def create_project(self, owner_id: str, title: str, category: str = "other") -> Project:
        title = (title or "").strip()
        if not title:
            error_message = "Title is required."
            raise ValidationError(error_message)
        try:
            parsed = Category(category)
        except ValueError as exc:
            error_message = f"Unknown category: {category}"
            raise ValidationError(error_message) from exc
        return self.projects.create(owner_id, title, parsed)

    def create_entry(
        self,
        owner_id: str,
        project_id: int,
        kind: str = "update",
        note: str | None = None,
        upload: Upload | None = None,
    ) -> Entry:
        op = self._publish("create_entry")
        with self._validating(op):
            project = self._owned_project(owner_id, project_id)
            try:
                parsed_kind = EntryKind(kind)
            except ValueError as exc:
                error_message = f"Unknown entry type: {kind}"
                raise ValidationError(error_message) from exc
            if upload is not None:
                validate_upload(upload)

        media_path: str | None = None
        if upload is not None:
            op.advance(PublishState.NORMALIZING)
            image = self._normalize(upload)
            media_path = paths.entry_path(
                owner_id, project.id, upload.filename, image.content_type
            )
            with self._step(op, PublishState.UPLOADING_PRIVATE, "upload the photo"):
                self.storage.upload(
                    self.media_bucket, media_path, image.data, image.content_type
                )

        with self._step(op, PublishState.RECORDING, "save the entry"):
            try:
                entry = self.entries.create(
                    project.id, parsed_kind, (note or "").strip() or None, media_path
                )
            except StoreError:
                if media_path:
                    logger.warning("Orphaned object %s/%s", self.media_bucket, media_path)
                raise
        op.advance(PublishState.DONE)
        return entry

    def create_pair(
        self,
        owner_id: str,
        before: Upload | None,
        after: Upload | None,
        caption: str | None,
        *,
        is_public: bool,
    ) -> BeforeAfterPair:
        op = self._publish("create_pair")
        with self._validating(op):
            if before is None or after is None:
                error_message = "Please select both Before and After images."
                raise ValidationError(error_message)
            validate_upload(before, "Before image")
            validate_upload(after, "After image")
            cleaned = clean_caption(caption)

        op.advance(PublishState.NORMALIZING)
        with ThreadPoolExecutor(max_workers=2) as pool:
            before_image, after_image = pool.map(self._normalize, (before, after))
        before_path, after_path = paths.pair_paths(
            owner_id,
            before.filename,
            after.filename,
            before_image.content_type,
            after_image.content_type,
        )

        with self._step(op, PublishState.UPLOADING_PRIVATE, "upload the images"):
            self.storage.upload(
                self.media_bucket, before_path, before_image.data, before_image.content_type
            )
            self.storage.upload(
                self.media_bucket, after_path, after_image.data, after_image.content_type
            )

        with self._step(op, PublishState.RECORDING, "save the post"):
            try:
                pair = self.pairs.create(
                    user_id=owner_id,
                    caption=cleaned,
                    before_path=before_path,
                    after_path=after_path,
                    is_public=is_public,
                )
            except StoreError:
                logger.warning(
                    "Orphaned objects %s/%s and %s",
                    self.media_bucket,
                    before_path,
                    after_path,
                )
                raise
        op.advance(PublishState.DONE)
        return pair

    def share_entry(
        self,
        owner_id: str,
        entry_id: int,
        caption: str | None = None,
        attribution_name: str | None = None,
        attribution_url: str | None = None,
        *,
        show_attribution: bool = False,
    ) -> Share:
        op = self._publish("share_entry")
        with self._validating(op):
            entry = self._owned_entry(owner_id, entry_id)
            if not entry.media_path:
                error_message = "Nothing to share: this entry has no photo."
                raise NothingToShareError(error_message)
            cleaned = clean_caption(caption)
            attribution_url = (attribution_url or "").strip() or None
            if attribution_url and not is_safe_url(attribution_url):
                error_message = "Contact link must be an http(s) or mailto URL."
                raise ValidationError(error_message)

        content_type = paths.content_type_for(entry.media_path)
        public_path = paths.public_share_path(owner_id, entry.id, content_type)
        with self._step(op, PublishState.UPLOADING_PUBLIC, "publish the photo"):
            signed = self.storage.create_signed_url(
                self.media_bucket, entry.media_path, REPUBLISH_URL_TTL
            )
            data = self.storage.fetch(signed)
            self.storage.upload(self.community_bucket, public_path, data, content_type)

        base = cleaned or entry.project.title
        with self._step(op, PublishState.RECORDING, "create the share link"):
            share = self._insert_share(
                user_id=owner_id,
                entry_id=entry.id,
                caption=cleaned,
                media_path=public_path,
                is_public=True,
                attribution_name=(attribution_name or "").strip() or None,
                attribution_url=attribution_url,
                show_attribution=show_attribution,
                slug_text=base,
            )
        op.advance(PublishState.DONE)
        return share

    def _insert_share(self, slug_text: str | None, **fields: object) -> Share:
        slug = paths.make_slug(slug_text)
        try:
            return self.shares.create(slug=slug, **fields)
        except ConflictError:
            logger.info("Slug %s already taken; retrying once", slug)
        return self.shares.create(slug=paths.make_slug(slug_text), **fields)

    # -- teardown ---------------------------------------------------------

    def unshare(self, owner_id: str, share_id: int) -> Share:
        op = self._teardown("unshare")
        with self._validating(op):
            share = self._owned_share(owner_id, share_id)

        with self._step(op, TeardownState.HIDING, "hide the share"):
            share = self.shares.set_public(share, False)

        # The flag is authoritative; a stray public object is unreferenced.
        op.advance(TeardownState.REMOVING_STORAGE)
        try:
            self.storage.remove(self.community_bucket, [share.media_path])
        except StorageError as exc:
            logger.warning(
                "Could not remove public file %s/%s: %s",
                self.community_bucket,
                share.media_path,
                exc,
            )
        op.advance(TeardownState.DONE)
        return share

    def _remove_then_delete(
        self,
        op: Operation,
        bucket: str,
        object_paths: Sequence[str | None],
        delete_row: Callable[[], None],
    ) -> None:
        present = [p for p in object_paths if p]
        if present:
            with self._step(op, TeardownState.REMOVING_STORAGE, "remove the stored image"):
                self.storage.remove(bucket, present)
        with self._step(op, TeardownState.REMOVING_RECORD, "delete the record"):
            delete_row()
        op.advance(TeardownState.DONE)

    def delete_entry(self, owner_id: str, entry_id: int) -> None:
        op = self._teardown("delete_entry")
        with self._validating(op):
            entry = self._owned_entry(owner_id, entry_id)
        self._remove_then_delete(
            op, self.media_bucket, [entry.media_path], lambda: self.entries.delete(entry)
        )

    def delete_pair(self, owner_id: str, pair_id: int) -> None:
        op = self._teardown("delete_pair")
        with self._validating(op):
            pair = self._owned_pair(owner_id, pair_id)
        self._remove_then_delete(
            op,
            self.media_bucket,
            [pair.before_path, pair.after_path],
            lambda: self.pairs.delete(pair),
        )

    def delete_share(self, owner_id: str, share_id: int) -> None:
        op = self._teardown("delete_share")
        with self._validating(op):
            share = self._owned_share(owner_id, share_id)
        self._remove_then_delete(
            op, self.community_bucket, [share.media_path], lambda: self.shares.delete(share)
        )

import base64
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from threading import Lock

from fastapi import HTTPException, status

from figurine_api.config import settings
from figurine_api.observability import log_event, metrics_store
from figurine_api.services.locks import KeyedLock

MISSING_SESSION_DETAIL = "No images found. Please upload photos first."

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ImageUpload:
    filename: str
    media_type: str
    content: bytes


@dataclass(frozen=True)
class StoredImage:
    angle: int
    filename: str
    media_type: str
    payload: str
    size_bytes: int


@dataclass(frozen=True)
class UploadSession:
    session_id: str
    images: tuple[StoredImage, ...]
    created_at: datetime
    expires_at: datetime
    order_id: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class UploadSessionStore:
    """Holds uploaded images between upload and payment.

    Sessions are immutable snapshots; every mutation swaps the whole value
    while holding that session's lock, so attach and consume on one session
    are serialized while other sessions proceed independently.
    """

    def __init__(
        self,
        *,
        ttl_s: int,
        max_images: int,
        max_image_bytes: int,
        clock: Clock = utcnow,
    ) -> None:
        self.ttl = timedelta(seconds=ttl_s)
        self.max_images = max_images
        self.max_image_bytes = max_image_bytes
        self._clock = clock
        self._guard = Lock()
        self._session_locks = KeyedLock()
        self._sessions: dict[str, UploadSession] = {}

    def _validate(self, images: Sequence[ImageUpload]) -> None:
        if not images:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files uploaded")
        if len(images) > self.max_images:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"At most {self.max_images} images can be uploaded",
            )
        for image in images:
            if not image.media_type.lower().startswith("image/"):
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Only image files are allowed",
                )
            if not image.content:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Image {image.filename} is empty",
                )
            if len(image.content) > self.max_image_bytes:
                raise HTTPException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    detail=f"Image {image.filename} exceeds {self.max_image_bytes} bytes",
                )

    def create(self, images: Sequence[ImageUpload]) -> UploadSession:
        self._validate(images)

        now = self._clock()
        session = UploadSession(
            session_id=str(uuid.uuid4()),
            images=tuple(
                StoredImage(
                    angle=index,
                    filename=image.filename,
                    media_type=image.media_type,
                    payload=base64.b64encode(image.content).decode("ascii"),
                    size_bytes=len(image.content),
                )
                for index, image in enumerate(images, start=1)
            ),
            created_at=now,
            expires_at=now + self.ttl,
        )
        with self._guard:
            self._sessions[session.session_id] = session

        metrics_store.increment("upload_sessions_created_total")
        log_event("upload_session_created", session_id=session.session_id)
        self.sweep_expired()
        return session

    def _current(self, session_id: str) -> UploadSession | None:
        with self._guard:
            return self._sessions.get(session_id)

    def get(self, session_id: str) -> UploadSession | None:
        """Return a live session; expired sessions read as missing even before a sweep."""
        session = self._current(session_id)
        if session is None or session.is_expired(self._clock()):
            return None
        return session

    def attach_order(self, session_id: str, order_id: str) -> UploadSession:
        with self._session_locks.hold(session_id):
            session = self.get(session_id)
            if session is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_SESSION_DETAIL
                )
            if session.order_id == order_id:
                return session
            if session.order_id is not None:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Upload session is already linked to another order",
                )

            attached = replace(session, order_id=order_id)
            with self._guard:
                self._sessions[session_id] = attached
            return attached

    def detach_order(self, session_id: str, order_id: str) -> None:
        """Undo ``attach_order`` when order creation fails after the link was made."""
        with self._session_locks.hold(session_id):
            session = self._current(session_id)
            if session is None or session.order_id != order_id:
                return
            with self._guard:
                self._sessions[session_id] = replace(session, order_id=None)

    def images_for_order(self, session_id: str, order_id: str) -> tuple[StoredImage, ...]:
        """Images of a session linked to ``order_id``.

        Reads past expiry as long as no sweep has removed the session yet.
        """
        with self._session_locks.hold(session_id):
            session = self._current(session_id)
            if session is None or session.order_id != order_id:
                return ()
            return session.images

    def consume(self, session_id: str) -> tuple[StoredImage, ...]:
        with self._session_locks.hold(session_id):
            with self._guard:
                session = self._sessions.pop(session_id, None)
        if session is None:
            return ()
        return session.images

    def sweep_expired(self) -> int:
        now = self._clock()
        with self._guard:
            candidates = [
                session_id
                for session_id, session in self._sessions.items()
                if session.is_expired(now)
            ]

        removed = 0
        for session_id in candidates:
            with self._session_locks.hold(session_id):
                with self._guard:
                    session = self._sessions.get(session_id)
                    if session is not None and session.is_expired(now):
                        del self._sessions[session_id]
                        removed += 1

        if removed:
            metrics_store.increment("upload_sessions_swept_total", removed)
            log_event("upload_sessions_swept", detail=f"removed={removed}")
        return removed

    def __len__(self) -> int:
        with self._guard:
            return len(self._sessions)


def build_upload_store() -> UploadSessionStore:
    return UploadSessionStore(
        ttl_s=settings.upload_session_ttl_s,
        max_images=settings.upload_max_images,
        max_image_bytes=settings.upload_max_image_bytes,
    )

"""
RemoteDirectory: the managed backend every screen talks to.

The contract mirrors a hosted identity + document store + blob store:
slash-separated paths where an even number of segments names a document and
an odd number names a collection. ``SqlDirectory`` implements it on top of an
async SQLAlchemy session factory, with an in-process change hub that pushes a
fresh snapshot to every listener after each committed write.
"""

import asyncio
import copy
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic.auth import auth_method_for, create_token, decode_token, hash_password, verify_password
from clinic.config import Settings, get_settings
from clinic.exceptions import AuthError, ReadError, SubscriptionError, WriteError
from clinic.models.account import Account
from clinic.models.record import StoredRecord
from clinic.schemas.directory import BlobResponse, Identity, Record, SessionToken
from clinic.services.blob_store import BlobStore

logger = logging.getLogger(__name__)


class _Sentinel:
    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return self.name


# Removes the key from the stored record (not the same as writing "").
DELETE_FIELD = _Sentinel("DELETE_FIELD")
# Replaced by the commit time, as an ISO-8601 UTC string.
SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")

Snapshot = Union[Optional[Record], list[Record]]
OnChange = Callable[[Snapshot], None]
OnError = Callable[[SubscriptionError], None]


def split_path(path: str) -> list[str]:
    segments = path.strip("/").split("/")
    if not path.strip("/") or any(not s for s in segments):
        raise ValueError(f"Invalid path '{path}'")
    return segments


def is_document_path(path: str) -> bool:
    return len(split_path(path)) % 2 == 0


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts)


def _require_document(path: str) -> list[str]:
    segments = split_path(path)
    if len(segments) % 2:
        raise ValueError(f"'{path}' is a collection path, expected a document path")
    return segments


def _require_collection(path: str) -> list[str]:
    segments = split_path(path)
    if not len(segments) % 2:
        raise ValueError(f"'{path}' is a document path, expected a collection path")
    return segments


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back without tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _resolve(value: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now.isoformat()
    if isinstance(value, dict):
        return {k: _resolve(v, now) for k, v in value.items() if v is not DELETE_FIELD}
    if isinstance(value, (list, tuple)):
        return [_resolve(v, now) for v in value]
    return value


def apply_fields(data: dict, fields: dict, now: datetime) -> dict:
    """Apply a write to a copy of ``data``, honouring the sentinels."""
    result = dict(data)
    for key, value in fields.items():
        if value is DELETE_FIELD:
            result.pop(key, None)
        else:
            result[key] = _resolve(value, now)
    return result


def _to_record(row: StoredRecord) -> Record:
    return Record(
        path=row.path,
        id=row.record_id,
        data=copy.deepcopy(row.data or {}),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


@dataclass(eq=False)
class _Listener:
    path: str
    on_change: OnChange
    on_error: Optional[OnError]
    active: bool = True


class ChangeHub:
    """Keeps the live listeners, keyed by the path they watch."""

    def __init__(self):
        self._listeners: dict[str, list[_Listener]] = {}

    def add(self, path: str, on_change: OnChange, on_error: Optional[OnError]) -> _Listener:
        listener = _Listener(path=path.strip("/"), on_change=on_change, on_error=on_error)
        self._listeners.setdefault(listener.path, []).append(listener)
        return listener

    def remove(self, listener: _Listener) -> None:
        listener.active = False
        bucket = self._listeners.get(listener.path, [])
        if listener in bucket:
            bucket.remove(listener)
        if not bucket:
            self._listeners.pop(listener.path, None)

    def affected_by(self, document_path: str) -> list[_Listener]:
        """Listeners on the document itself and on its parent collection."""
        segments = split_path(document_path)
        collection = "/".join(segments[:-1])
        return list(self._listeners.get("/".join(segments), [])) + list(self._listeners.get(collection, []))

    def count(self, path: Optional[str] = None) -> int:
        if path is None:
            return sum(len(b) for b in self._listeners.values())
        return len(self._listeners.get(path.strip("/"), []))


class Subscription:
    """Unsubscribe handle. Calling it more than once is harmless."""

    def __init__(self, hub: ChangeHub, listener: _Listener):
        self._hub = hub
        self._listener = listener

    @property
    def path(self) -> str:
        return self._listener.path

    @property
    def active(self) -> bool:
        return self._listener.active

    def close(self) -> None:
        if self._listener.active:
            self._hub.remove(self._listener)

    def __call__(self) -> None:
        self.close()


class RemoteDirectory(ABC):
    """Identity, document and blob operations the client relies on."""

    @abstractmethod
    async def authenticate(self, identifier: str, secret: str) -> SessionToken:
        ...

    @abstractmethod
    async def register(self, identifier: str, secret: str) -> Identity:
        ...

    @abstractmethod
    async def verify_token(self, token: str) -> Optional[Identity]:
        ...

    @abstractmethod
    async def read_once(self, path: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def subscribe(self, path: str, on_change: OnChange, on_error: Optional[OnError] = None) -> Subscription:
        ...

    @abstractmethod
    async def write(self, path: str, fields: dict, merge: bool = False) -> Record:
        ...

    @abstractmethod
    async def add(self, collection_path: str, fields: dict) -> Record:
        ...

    @abstractmethod
    async def transact(self, path: str, fn: Callable[[Optional[dict]], Optional[dict]]) -> Optional[Record]:
        ...

    @abstractmethod
    async def query(self, collection_path: str, field: str, equals: Any) -> list[Record]:
        ...

    @abstractmethod
    async def upload_blob(self, data: bytes, name: str) -> BlobResponse:
        ...


class SqlDirectory(RemoteDirectory):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        blob_store: Optional[BlobStore] = None,
    ):
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self._blob_store = blob_store or BlobStore(self.settings)
        self.hub = ChangeHub()
        self._publish_lock = asyncio.Lock()
        self._path_locks: dict[str, asyncio.Lock] = {}
        self._failures: dict[str, list[float]] = {}

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def register(self, identifier: str, secret: str) -> Identity:
        identifier = self._normalize(identifier)
        method = auth_method_for(identifier)
        if method is None:
            raise AuthError(AuthError.INVALID_IDENTIFIER, "Enter a valid email address or mobile number.")
        if len(secret or "") < self.settings.min_secret_length:
            raise AuthError(
                AuthError.WEAK_SECRET,
                f"Password should be at least {self.settings.min_secret_length} characters.",
            )

        try:
            async with self._session_factory() as db:
                async with db.begin():
                    existing = await db.scalar(select(Account).where(Account.identifier == identifier))
                    if existing:
                        raise AuthError(AuthError.IDENTIFIER_IN_USE, "An account already exists for this identifier.")
                    account_id = uuid.uuid4().hex
                    account = Account(
                        id=account_id,
                        identifier=identifier,
                        auth_method=method,
                        password_hash=hash_password(secret),
                    )
                    db.add(account)
                identity = Identity(id=account_id, identifier=identifier, auth_method=method)
        except IntegrityError as e:
            raise AuthError(AuthError.IDENTIFIER_IN_USE, "An account already exists for this identifier.") from e
        except SQLAlchemyError as e:
            logger.error("Registration failed for %s: %s", identifier, e)
            raise WriteError("accounts", str(e)) from e

        logger.info("Registered %s identity %s", method, identity.id)
        return identity

    async def authenticate(self, identifier: str, secret: str) -> SessionToken:
        identifier = self._normalize(identifier)
        self._prune_failures()
        if self._is_throttled(identifier):
            raise AuthError(AuthError.THROTTLED, "Too many failed attempts. Try again later.")

        try:
            async with self._session_factory() as db:
                account = await db.scalar(select(Account).where(Account.identifier == identifier))
        except SQLAlchemyError as e:
            raise ReadError("accounts", str(e)) from e

        if account is None:
            raise AuthError(AuthError.UNKNOWN_IDENTIFIER, "No account found for this identifier.")
        if not verify_password(secret or "", account.password_hash):
            self._failures.setdefault(identifier, []).append(time.monotonic())
            raise AuthError(AuthError.INVALID_CREDENTIALS, "Wrong password.")

        self._failures.pop(identifier, None)
        token, expires_at = create_token(account.id, account.auth_method, self.settings)
        return SessionToken(
            access_token=token,
            identity=Identity(id=account.id, identifier=account.identifier, auth_method=account.auth_method),
            expires_at=expires_at,
        )

    async def verify_token(self, token: str) -> Optional[Identity]:
        payload = decode_token(token, self.settings)
        if not payload:
            return None
        async with self._session_factory() as db:
            account = await db.get(Account, payload.get("sub"))
        if account is None:
            return None
        return Identity.model_validate(account)

    def _normalize(self, identifier: str) -> str:
        identifier = (identifier or "").strip()
        return identifier.lower() if "@" in identifier else identifier

    def _prune_failures(self) -> None:
        """Drop failed-login entries that are past the lockout window."""
        window_start = time.monotonic() - self.settings.login_lockout_seconds
        for identifier in list(self._failures):
            recent = [t for t in self._failures[identifier] if t >= window_start]
            if recent:
                self._failures[identifier] = recent
            else:
                del self._failures[identifier]

    def _is_throttled(self, identifier: str) -> bool:
        return len(self._failures.get(identifier, [])) >= self.settings.max_failed_logins

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def read_once(self, path: str) -> Optional[Record]:
        _require_document(path)
        try:
            async with self._session_factory() as db:
                row = await db.get(StoredRecord, path.strip("/"))
                return _to_record(row) if row is not None else None
        except SQLAlchemyError as e:
            raise ReadError(path, str(e)) from e

    async def _read_collection(self, collection_path: str) -> list[Record]:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(StoredRecord)
                    .where(StoredRecord.collection == collection_path.strip("/"))
                    .order_by(StoredRecord.created_at, StoredRecord.record_id)
                )
                return [_to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise ReadError(collection_path, str(e)) from e

    async def query(self, collection_path: str, field: str, equals: Any) -> list[Record]:
        """Records whose ``field`` equals the value, or contains it when the field is a list."""
        _require_collection(collection_path)
        matches = []
        for record in await self._read_collection(collection_path):
            value = record.data.get(field)
            if value == equals or (isinstance(value, list) and equals in value):
                matches.append(record)
        return matches

    async def write(self, path: str, fields: dict, merge: bool = False) -> Record:
        segments = _require_document(path)
        path = "/".join(segments)
        now = _utcnow()
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    row = await db.get(StoredRecord, path)
                    record = self._store(db, row, segments, fields, now, merge)
        except SQLAlchemyError as e:
            logger.error("Write to %s failed: %s", path, e)
            raise WriteError(path, str(e)) from e
        await self._publish(path)
        return record

    async def add(self, collection_path: str, fields: dict) -> Record:
        _require_collection(collection_path)
        return await self.write(join_path(collection_path, uuid.uuid4().hex), fields)

    async def transact(self, path: str, fn: Callable[[Optional[dict]], Optional[dict]]) -> Optional[Record]:
        """
        Atomic read-modify-write of one document.

        ``fn`` receives the current fields (or None when the document does not
        exist) and returns the full replacement, or None to leave it alone.
        Calls for the same path run one at a time and each runs inside a
        single database transaction.
        """
        segments = _require_document(path)
        path = "/".join(segments)
        lock = self._path_locks.setdefault(path, asyncio.Lock())
        async with lock:
            now = _utcnow()
            try:
                async with self._session_factory() as db:
                    async with db.begin():
                        row = await db.get(StoredRecord, path, with_for_update=True)
                        current = copy.deepcopy(row.data) if row is not None else None
                        replacement = fn(current)
                        if replacement is None:
                            return _to_record(row) if row is not None else None
                        record = self._store(db, row, segments, replacement, now, merge=False)
            except SQLAlchemyError as e:
                logger.error("Transaction on %s failed: %s", path, e)
                raise WriteError(path, str(e)) from e
        await self._publish(path)
        return record

    def _store(self, db: AsyncSession, row, segments: list[str], fields: dict, now: datetime, merge: bool) -> Record:
        base = row.data if (row is not None and merge) else {}
        data = apply_fields(base or {}, fields, now)
        if row is None:
            row = StoredRecord(
                path="/".join(segments),
                collection="/".join(segments[:-1]),
                record_id=segments[-1],
                data=data,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
        else:
            row.data = data
            row.updated_at = now
        return _to_record(row)

    # ------------------------------------------------------------------
    # Live subscriptions
    # ------------------------------------------------------------------

    async def subscribe(self, path: str, on_change: OnChange, on_error: Optional[OnError] = None) -> Subscription:
        """
        Watch a document or a collection. The current snapshot is delivered
        before this returns; later snapshots follow every committed write.
        """
        split_path(path)
        listener = self.hub.add(path, on_change, on_error)
        await self._deliver(listener)
        return Subscription(self.hub, listener)

    async def _snapshot(self, path: str) -> Snapshot:
        if is_document_path(path):
            return await self.read_once(path)
        return await self._read_collection(path)

    async def _publish(self, document_path: str) -> None:
        async with self._publish_lock:
            for listener in self.hub.affected_by(document_path):
                await self._deliver(listener)

    async def _deliver(self, listener: _Listener) -> None:
        try:
            snapshot = await self._snapshot(listener.path)
        except ReadError as e:
            self._fail(listener, SubscriptionError(listener.path, e.reason))
            return
        if not listener.active:
            return
        try:
            listener.on_change(snapshot)
        except Exception as e:
            logger.exception("Listener on %s raised", listener.path)
            self._fail(listener, SubscriptionError(listener.path, str(e)))

    def _fail(self, listener: _Listener, error: SubscriptionError) -> None:
        logger.warning("Subscription error on %s: %s", listener.path, error.reason)
        if listener.on_error is None:
            return
        try:
            listener.on_error(error)
        except Exception:
            logger.exception("Error handler on %s raised", listener.path)

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    async def upload_blob(self, data: bytes, name: str) -> BlobResponse:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    blob = await self._blob_store.upload(data, name, db)
                    response = BlobResponse.model_validate(blob)
        except (OSError, SQLAlchemyError) as e:
            logger.error("Upload of %s failed: %s", name, e)
            raise WriteError(f"attachments/{name}", str(e)) from e
        return response


__all__ = [
    "DELETE_FIELD",
    "SERVER_TIMESTAMP",
    "ChangeHub",
    "RemoteDirectory",
    "SqlDirectory",
    "Subscription",
    "is_document_path",
    "join_path",
    "split_path",
]

"""Document and blob stores backing the RSVP mirrors.

The document store keeps JSON values at slash-separated paths (``rsvps``,
``rsvps/<key>``, ``settings/landingPage``) in the ``nodes`` table and pushes a
full snapshot to every subscriber whose path overlaps a committed write.
Database work runs in worker threads; subscriber callbacks always run on the
event loop that registered them, one at a time, in the order writes commit.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import mimetypes
import secrets
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from . import database
from .models import Node
from .utils import secure_filename, utcnow

logger = logging.getLogger("uvicorn.error")

_PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


def normalize_path(path: str) -> str:
    stripped = (path or "").strip().strip("/")
    if not stripped:
        raise ValueError("Store paths must not be empty")
    segments = stripped.split("/")
    if any(not segment or segment in {".", ".."} for segment in segments):
        raise ValueError(f"Invalid store path: {path!r}")
    return "/".join(segments)


def _ancestors(path: str) -> list[str]:
    segments = path.split("/")
    return ["/".join(segments[:index]) for index in range(1, len(segments))]


def _overlaps(first: str, second: str) -> bool:
    return (
        first == second
        or first.startswith(second + "/")
        or second.startswith(first + "/")
    )


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, Mapping) and not value)


@dataclass(frozen=True)
class Snapshot:
    """Full value at a path at the moment it was read."""

    path: str
    value: Any

    @property
    def key(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def val(self) -> Any:
        return self.value

    def exists(self) -> bool:
        return self.value is not None

    def children(self) -> list[tuple[str, Any]]:
        if not isinstance(self.value, Mapping):
            return []
        return list(self.value.items())


class PushIdGenerator:
    """Time-ordered unique keys; lexical order follows creation order."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_random = [0] * 12

    def __call__(self) -> str:
        with self._lock:
            now = int(self._clock() * 1000)
            if now <= self._last_ms:
                now = self._last_ms
                index = len(self._last_random) - 1
                while index >= 0 and self._last_random[index] == 63:
                    self._last_random[index] = 0
                    index -= 1
                if index < 0:
                    # 64**12 keys inside one millisecond; move the clock instead.
                    now += 1
                else:
                    self._last_random[index] += 1
            else:
                self._last_random = [secrets.randbelow(64) for _ in range(12)]
            self._last_ms = now

            stamp = []
            remaining = now
            for _ in range(8):
                stamp.append(_PUSH_CHARS[remaining % 64])
                remaining //= 64
            return "".join(reversed(stamp)) + "".join(
                _PUSH_CHARS[digit] for digit in self._last_random
            )


SnapshotCallback = Callable[[Snapshot], None]
ErrorCallback = Callable[[BaseException], None]


@dataclass(eq=False)
class _Subscription:
    path: str
    callback: SnapshotCallback
    error_callback: ErrorCallback | None
    loop: asyncio.AbstractEventLoop
    active: bool = True
    pending: set = field(default_factory=set)


class RemoteStore:
    """Path-addressed JSON store with persistent value subscriptions."""

    def __init__(self, *, id_generator: Callable[[], str] | None = None):
        self._new_key = id_generator or PushIdGenerator()
        self._write_lock = threading.RLock()
        self._subs_lock = threading.Lock()
        self._subscriptions: list[_Subscription] = []

    # -- writes ---------------------------------------------------------------

    async def push(self, path: str, value: Any) -> str:
        """Store ``value`` under a fresh key below ``path`` and return the key."""
        parent = normalize_path(path)
        key = self._new_key()
        await asyncio.to_thread(self._write, f"{parent}/{key}", value)
        return key

    async def set(self, path: str, value: Any) -> None:
        """Replace the whole subtree at ``path``; ``None`` removes it."""
        await asyncio.to_thread(self._write, normalize_path(path), value)

    async def remove(self, path: str) -> None:
        await asyncio.to_thread(self._write, normalize_path(path), None)

    def _write(self, path: str, value: Any) -> None:
        encoded = None if _is_empty(value) else json.dumps(value)
        with self._write_lock:
            with database.get_session() as session:
                if not self._write_into_ancestor(session, path, value):
                    self._replace_subtree(session, path, encoded)
            self._notify(path)

    def _write_into_ancestor(self, session: Session, path: str, value: Any) -> bool:
        ancestors = _ancestors(path)
        if not ancestors:
            return False
        holder = session.scalars(
            select(Node).where(Node.path.in_(ancestors)).order_by(Node.path.desc())
        ).first()
        if holder is None:
            return False

        document = json.loads(holder.value)
        if not isinstance(document, dict):
            document = {}
        relative = path[len(holder.path) + 1 :].split("/")
        node = document
        for segment in relative[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                if _is_empty(value):
                    return True
                child = {}
                node[segment] = child
            node = child
        if _is_empty(value):
            node.pop(relative[-1], None)
        else:
            node[relative[-1]] = copy.deepcopy(value)

        if _is_empty(document):
            session.delete(holder)
        else:
            holder.value = json.dumps(document)
            holder.updated_at = utcnow()
        return True

    def _replace_subtree(self, session: Session, path: str, encoded: str | None) -> None:
        session.execute(
            delete(Node).where(
                or_(
                    Node.path == path,
                    Node.path.startswith(path + "/", autoescape=True),
                )
            )
        )
        if encoded is not None:
            session.add(Node(path=path, value=encoded, updated_at=utcnow()))

    # -- reads ----------------------------------------------------------------

    async def get(self, path: str) -> Snapshot:
        """One-shot read of the current value at ``path``."""
        normalized = normalize_path(path)
        return await asyncio.to_thread(self._read, normalized)

    def _read(self, path: str) -> Snapshot:
        with database.get_session() as session:
            exact = session.get(Node, path)
            if exact is not None:
                return Snapshot(path, json.loads(exact.value))

            ancestors = _ancestors(path)
            if ancestors:
                holder = session.scalars(
                    select(Node)
                    .where(Node.path.in_(ancestors))
                    .order_by(Node.path.desc())
                ).first()
                if holder is not None:
                    value: Any = json.loads(holder.value)
                    for segment in path[len(holder.path) + 1 :].split("/"):
                        value = value.get(segment) if isinstance(value, dict) else None
                    return Snapshot(path, value)

            rows = session.execute(
                select(Node.path, Node.value)
                .where(Node.path.startswith(path + "/", autoescape=True))
                .order_by(Node.path)
            ).all()

        tree: dict[str, Any] = {}
        for row_path, raw in rows:
            segments = row_path[len(path) + 1 :].split("/")
            node = tree
            for segment in segments[:-1]:
                child = node.get(segment)
                if not isinstance(child, dict):
                    child = {}
                    node[segment] = child
                node = child
            node[segments[-1]] = json.loads(raw)
        return Snapshot(path, tree or None)

    # -- subscriptions --------------------------------------------------------

    def on_value(
        self,
        path: str,
        callback: SnapshotCallback,
        error_callback: ErrorCallback | None = None,
    ) -> Callable[[], None]:
        """Subscribe to full snapshots of ``path``; returns the unsubscribe handle.

        Must be called from a running event loop. The first snapshot arrives
        asynchronously right after registration.
        """
        subscription = _Subscription(
            path=normalize_path(path),
            callback=callback,
            error_callback=error_callback,
            loop=asyncio.get_running_loop(),
        )
        with self._subs_lock:
            self._subscriptions.append(subscription)
        logger.debug("Opened subscription on %s", subscription.path)

        initial = subscription.loop.run_in_executor(
            None, self._deliver_initial, subscription
        )
        subscription.pending.add(initial)
        initial.add_done_callback(subscription.pending.discard)

        def unsubscribe() -> None:
            self._close(subscription)

        return unsubscribe

    def off(self, path: str) -> None:
        """Close every subscription registered on exactly ``path``."""
        normalized = normalize_path(path)
        with self._subs_lock:
            matching = [sub for sub in self._subscriptions if sub.path == normalized]
        for subscription in matching:
            self._close(subscription)

    @property
    def subscription_count(self) -> int:
        with self._subs_lock:
            return len(self._subscriptions)

    def _close(self, subscription: _Subscription) -> None:
        with self._subs_lock:
            if not subscription.active:
                return
            subscription.active = False
            self._subscriptions.remove(subscription)
        logger.debug("Closed subscription on %s", subscription.path)

    def _deliver_initial(self, subscription: _Subscription) -> None:
        with self._write_lock:
            self._deliver([subscription], subscription.path)

    def _notify(self, written_path: str) -> None:
        with self._subs_lock:
            targets = [
                sub
                for sub in self._subscriptions
                if _overlaps(sub.path, written_path)
            ]
        by_path: dict[str, list[_Subscription]] = {}
        for subscription in targets:
            by_path.setdefault(subscription.path, []).append(subscription)
        for path, subscriptions in by_path.items():
            self._deliver(subscriptions, path)

    def _deliver(self, subscriptions: list[_Subscription], path: str) -> None:
        try:
            snapshot = self._read(path)
        except Exception as exc:
            for subscription in subscriptions:
                self._post(subscription, self._error_handler(subscription), exc)
            return
        for subscription in subscriptions:
            self._post(
                subscription,
                subscription.callback,
                Snapshot(snapshot.path, copy.deepcopy(snapshot.value)),
            )

    def _error_handler(self, subscription: _Subscription) -> ErrorCallback:
        if subscription.error_callback is not None:
            return subscription.error_callback

        def log_error(exc: BaseException) -> None:
            logger.error(
                "Subscription on %s failed: %s", subscription.path, exc, exc_info=exc
            )

        return log_error

    def _post(self, subscription: _Subscription, handler, argument) -> None:
        if not subscription.active:
            return
        try:
            subscription.loop.call_soon_threadsafe(
                self._dispatch, subscription, handler, argument
            )
        except RuntimeError:
            logger.warning(
                "Dropping subscription on %s; its event loop is closed",
                subscription.path,
            )
            self._close(subscription)

    @staticmethod
    def _dispatch(subscription: _Subscription, handler, argument) -> None:
        if not subscription.active:
            return
        try:
            handler(argument)
        except Exception:
            logger.exception("Subscriber on %s raised", subscription.path)


class BlobStore:
    """Write-once file storage served under ``url_prefix`` by the web app."""

    def __init__(self, root: Path, *, base_url: str, url_prefix: str = "/media"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.url_prefix = "/" + url_prefix.strip("/")

    def _target(self, path: str) -> Path:
        normalized = normalize_path(path)
        root = self.root.resolve()
        target = (root / normalized).resolve()
        if root not in target.parents:
            raise ValueError(f"Blob path escapes the media root: {path!r}")
        return target

    async def upload(
        self, path: str, data: bytes, content_type: str | None = None
    ) -> str:
        """Store ``data`` at ``path``; existing blobs are never overwritten."""
        target = self._target(path)
        await asyncio.to_thread(self._write, target, data)
        logger.info(
            "Stored blob %s (%d bytes, %s)", path, len(data), content_type or "unknown"
        )
        return normalize_path(path)

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("xb") as handle:
            handle.write(data)

    def download_url(self, path: str) -> str:
        normalized = normalize_path(path)
        return f"{self.base_url}{self.url_prefix}/{quote(normalized)}"

    def exists(self, path: str) -> bool:
        return self._target(path).is_file()

    @staticmethod
    def disambiguated_name(
        filename: str | None,
        content_type: str | None = None,
        *,
        now: float | None = None,
    ) -> str:
        """Prefix the sanitized filename with epoch milliseconds."""
        name = secure_filename(filename)
        if "." not in name and content_type:
            extension = mimetypes.guess_extension(content_type.split(";")[0].strip())
            if extension:
                name = f"{name}{extension}"
        stamp = int((time.time() if now is None else now) * 1000)
        return f"{stamp}_{name}"

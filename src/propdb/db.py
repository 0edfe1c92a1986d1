"""PropertyDB: registry of persisted properties and the write-behind engine.

Each registered Property is bound to one file, <field_name>_<version>.<ext>,
inside a caller-chosen directory. A SET/UPDATE observer on the property puts
its entry in the dirty queue; the scheduler's pulses drain the queue and
write every drained entry. Nobody calls save.

Lifecycle: UNINITIALIZED -> ACTIVE -> CLOSING -> CLOSED. Only one database is
ACTIVE per process at a time. initialize() hands back the token that
authorizes force_save() and close().

    db = PropertyDB(interval=1.0)
    token = db.initialize()
    score = db.initiate("saves", "score", 1, 0)
    score.set(42)          # written within ~1s
    db.close(token)        # stops the clock, final flush

Locking:
- _dirty_lock guards queue membership only and is never held across I/O.
- _save_lock serializes every flush (pulses, force_save, unload, close), so
  at most one write step runs at any instant.
- _registry_lock guards _entries/_by_path.
- _state_lock makes token validation + invalidation atomic in close().
  Lock order is _registry_lock then _state_lock, so initiate() and close()
  cannot interleave between the active check and registration.
Error handlers are never called while _save_lock is held.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from propdb.errors import (
    DatabaseException,
    DuplicateRegistrationError,
    InitializationError,
    IOFailure,
    NotRegisteredError,
    SerializationError,
)
from propdb.handlers import ErrorHandler, throw_all
from propdb.observable import EventType, Mutator, Observer, Property
from propdb.scheduler import IntervalScheduler, Scheduler
from propdb.serializers import PickleSerializer, Serializer
from propdb.token import InitializationToken, new_generation

logger = logging.getLogger("propdb.db")

DEFAULT_INTERVAL = 5.0  # seconds between save pulses


class DBState(Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


# ─── Process slot ────────────────────────────────────────────────────────────
# _active is set iff that database is ACTIVE
_slot_lock = threading.Lock()
_active: PropertyDB | None = None


def initialized() -> bool:
    """Is any database active in this process?"""
    return _active is not None


def active_db() -> PropertyDB | None:
    return _active


@dataclass(eq=False)
class _Entry:
    prop: Property
    location: Path
    canonical: str
    field_name: str
    version: int
    handler: ErrorHandler
    serializer: Serializer
    observer: Observer | None = None

    def describe(self) -> str:
        return f"{self.field_name} version {self.version}"


def _chain(exc: DatabaseException, cause: BaseException) -> DatabaseException:
    exc.__cause__ = cause
    return exc


def _check_field_name(field_name: str) -> None:
    if not isinstance(field_name, str) or not field_name:
        raise ValueError(f"field_name must be a non-empty string, got {field_name!r}")
    if os.sep in field_name or (os.altsep and os.altsep in field_name):
        raise ValueError(f"field_name must not contain path separators: {field_name!r}")


def _canonical(location: Path) -> str:
    # Resolved once at registration; later symlink changes are not tracked.
    return os.path.normcase(str(location.resolve()))


class PropertyDB:
    """Registry + dirty queue + scheduler for one set of persisted properties."""

    def __init__(
        self,
        interval: float | None = None,
        *,
        scheduler: Scheduler | None = None,
        serializer: Serializer | None = None,
    ) -> None:
        if interval is not None and scheduler is not None:
            raise ValueError("Pass either interval or scheduler, not both")
        if scheduler is None:
            scheduler = IntervalScheduler(DEFAULT_INTERVAL if interval is None else interval)
        self._scheduler = scheduler
        self._serializer = serializer or PickleSerializer()

        self._state = DBState.UNINITIALIZED
        self._token: InitializationToken | None = None
        self._state_lock = threading.RLock()

        self._entries: dict[Property, _Entry] = {}
        self._by_path: dict[str, _Entry] = {}
        self._registry_lock = threading.RLock()

        # dict as an insertion-ordered set: re-queuing an entry is a no-op
        self._dirty: dict[_Entry, None] = {}
        self._dirty_lock = threading.Lock()
        self._save_lock = threading.RLock()

    # ─── Lifecycle ──────────────────────────────────────────────────────────

    @property
    def state(self) -> DBState:
        return self._state

    @property
    def initialized(self) -> bool:
        return self._state is DBState.ACTIVE

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def serializer(self) -> Serializer:
        return self._serializer

    def initialize(self) -> InitializationToken:
        """Activate this database and start the scheduler.

        Raises InitializationError if any database is already active in the
        process, or if this one has been used before.
        """
        global _active
        with _slot_lock:
            if _active is not None:
                raise InitializationError("PropertyDB already initialized!")
            with self._state_lock:
                if self._state is not DBState.UNINITIALIZED:
                    raise InitializationError(
                        f"PropertyDB cannot be initialized from state {self._state.value!r}"
                    )
                token = InitializationToken(self, new_generation())
                self._token = token
                self._state = DBState.ACTIVE
            _active = self

        try:
            self._scheduler.schedule_repeating_task(token, self._make_pulse(token))
        except BaseException:
            with self._state_lock:
                self._token = None
                self._state = DBState.CLOSED
            with _slot_lock:
                _active = None
            raise
        logger.info("Initialized DB with %r", self._scheduler)
        return token

    def _make_pulse(self, token: InitializationToken):
        def _pulse() -> None:
            if self.token_valid(token):
                self._save_properties()

        return _pulse

    def token_valid(self, token: InitializationToken | None) -> bool:
        current = self._token
        return (
            isinstance(token, InitializationToken)
            and current is not None
            and token._db is self
            and token.generation == current.generation
        )

    def close(self, token: InitializationToken) -> None:
        """Invalidate the token, stop the scheduler, final flush, free the slot."""
        global _active
        # Registry before state: an initiate in progress finishes registering
        # first, so the final flush below sees its entry.
        with self._registry_lock, self._state_lock:
            if not self.token_valid(token):
                raise InitializationError("Invalid initialization token!")
            # Observers holding this token stop enqueuing from here on.
            self._token = None
            self._state = DBState.CLOSING
        logger.debug("Closing DB")

        try:
            self._scheduler.on_close()
        finally:
            try:
                self._save_properties()
            finally:
                self._detach_all()
                with self._state_lock:
                    self._state = DBState.CLOSED
                with _slot_lock:
                    if _active is self:
                        _active = None
                logger.info("Closed DB")

    def _detach_all(self) -> None:
        with self._registry_lock:
            for entry in self._entries.values():
                entry.prop.remove_observer(entry.observer)
            self._entries.clear()
            self._by_path.clear()
        with self._dirty_lock:
            self._dirty.clear()

    def force_save(self, token: InitializationToken) -> None:
        """Write every dirty property now, outside the pulse cadence."""
        if not self.token_valid(token):
            raise InitializationError("Invalid initialization token!")
        logger.debug("Forcing save")
        self._save_properties()

    def _require_active(self) -> None:
        if self._state is not DBState.ACTIVE:
            raise InitializationError("Database not initialized!")

    # ─── Locations ──────────────────────────────────────────────────────────

    def location(
        self,
        directory: str | os.PathLike,
        field_name: str,
        version: int,
        serializer: Serializer | None = None,
    ) -> Path:
        """File that stores (field_name, version) inside directory."""
        _check_field_name(field_name)
        ext = (serializer or self._serializer).extension
        return Path(directory).absolute() / f"{field_name}_{version}.{ext}"

    def exists(
        self,
        directory: str | os.PathLike,
        field_name: str,
        version: int,
        serializer: Serializer | None = None,
    ) -> bool:
        """True if the file exists or the property is loaded but not yet flushed."""
        location = self.location(directory, field_name, version, serializer)
        if location.exists():
            return True
        try:
            canonical = _canonical(location)
        except OSError:
            return False
        with self._registry_lock:
            return canonical in self._by_path

    def loaded(self, field_name: str, version: int | None = None) -> bool:
        """Is a property with this name (and version, if given) registered?"""
        if not self.initialized:
            return False
        with self._registry_lock:
            return any(
                entry.field_name == field_name and (version is None or entry.version == version)
                for entry in self._entries.values()
            )

    # ─── Registry ───────────────────────────────────────────────────────────

    def initiate(
        self,
        directory: str | os.PathLike,
        field_name: str,
        version: int,
        initial_value: Any,
        handler: ErrorHandler | None = None,
        *,
        copy_on_read: bool = False,
        mutator: Mutator | None = None,
        serializer: Serializer | None = None,
        expected_type: type | tuple[type, ...] | None = None,
    ) -> Property | None:
        """Load the stored property, or create it from initial_value.

        A newly created property is queued so its initial state gets written
        on the next pulse. Failures go to handler; if it swallows them the
        return value is None.

        If expected_type is given, a stored value that is not an instance of
        it is reported as a SerializationError. Nothing is checked otherwise:
        JSON, for one, reads tuples back as lists.
        """
        self._require_active()
        handler = handler or throw_all()
        serializer = serializer or self._serializer
        location = self.location(directory, field_name, version, serializer)
        what = f"{field_name} version {version}"

        try:
            canonical = _canonical(location)
        except OSError as exc:
            handler.handle(_chain(IOFailure(f"OSError while resolving property: {what}"), exc))
            return None

        with self._registry_lock:
            with self._state_lock:
                # close() may have run since the check above.
                self._require_active()
                token = self._token
            if canonical in self._by_path:
                failure: DatabaseException = DuplicateRegistrationError(
                    f"Property already loaded: {what}"
                )
            else:
                try:
                    value, created = self._load(
                        location, serializer, initial_value, expected_type, what
                    )
                except DatabaseException as exc:
                    failure = exc
                else:
                    prop = Property(value, mutator=mutator, copy_on_read=copy_on_read)
                    entry = _Entry(
                        prop=prop,
                        location=location,
                        canonical=canonical,
                        field_name=field_name,
                        version=version,
                        handler=handler,
                        serializer=serializer,
                    )
                    self._register(entry, created, token)
                    return prop

        handler.handle(failure)
        return None

    def _load(
        self,
        location: Path,
        serializer: Serializer,
        initial_value: Any,
        expected_type: type | tuple[type, ...] | None,
        what: str,
    ) -> tuple[Any, bool]:
        if not location.exists():
            logger.debug("Created %s", what)
            return initial_value, True

        mode, encoding = ("rb", None) if serializer.binary else ("r", "utf-8")
        try:
            with open(location, mode, encoding=encoding) as fh:
                value = serializer.load(fh)
        except OSError as exc:
            raise IOFailure(f"IOException while loading property: {what}") from exc
        except Exception as exc:
            raise SerializationError(
                f"{type(exc).__name__} while loading property: {what}"
            ) from exc

        if expected_type is not None and not isinstance(value, expected_type):
            raise SerializationError(
                f"Type mismatch while loading property {what}: "
                f"found {type(value).__name__}"
            )
        logger.debug("Loaded %s", what)
        return value, False

    def _register(self, entry: _Entry, created: bool, token: InitializationToken) -> None:
        def _on_change(prop: Property, kind: EventType) -> None:
            if self.token_valid(token):
                self._enqueue(entry)

        entry.observer = _on_change
        self._entries[entry.prop] = entry
        self._by_path[entry.canonical] = entry
        if created:
            self._enqueue(entry)  # initial save
        entry.prop.add_observer(_on_change, EventType.SET, EventType.UPDATE)

    def unload(self, prop: Property, handler: ErrorHandler | None = None) -> Path | None:
        """Detach prop from the database, flushing its pending write first.

        The Property keeps its value but is no longer persisted. Returns the
        file location, or None if the handler swallowed a failure. If the
        pending write fails, the failure goes to handler and the property
        stays loaded and dirty.
        """
        self._require_active()
        handler = handler or throw_all()

        with self._registry_lock:
            entry = self._entries.get(prop)
            if entry is None:
                failure: DatabaseException | None = NotRegisteredError(
                    "Attempted to unload a property that was not loaded"
                )
            else:
                prop.remove_observer(entry.observer)
                with self._dirty_lock:
                    pending = entry in self._dirty
                if pending:
                    failure = self._save_properties(hold=entry)
                else:
                    # A pulse may be writing this entry right now.
                    with self._save_lock:
                        pass
                    failure = None
                if failure is None:
                    del self._entries[prop]
                    del self._by_path[entry.canonical]
                    with self._dirty_lock:
                        self._dirty.pop(entry, None)
                    logger.debug("Unloaded %s", entry.describe())
                    return entry.location
                # Still registered; the next pulse retries the write.
                prop.add_observer(entry.observer, EventType.SET, EventType.UPDATE)
                self._enqueue(entry)

        handler.handle(failure)
        return None

    def delete(self, prop: Property, handler: ErrorHandler | None = None) -> None:
        """Unload a loaded property and remove its file."""
        self._require_active()
        handler = handler or throw_all()
        entry = self._entries.get(prop)
        location = self.unload(prop, handler)
        if location is None:
            return
        self._remove_file(location, entry.describe(), handler)

    def delete_field(
        self,
        directory: str | os.PathLike,
        field_name: str,
        version: int,
        handler: ErrorHandler | None = None,
        serializer: Serializer | None = None,
    ) -> None:
        """Delete a property by location, whether or not it is loaded."""
        self._require_active()
        handler = handler or throw_all()
        location = self.location(directory, field_name, version, serializer)
        what = f"{field_name} version {version}"

        try:
            canonical = _canonical(location)
        except OSError as exc:
            handler.handle(_chain(IOFailure(f"OSError while deleting property: {what}"), exc))
            return

        with self._registry_lock:
            entry = self._by_path.get(canonical)
        if entry is not None:
            self.delete(entry.prop, handler)
        else:
            self._remove_file(location, what, handler)

    def _remove_file(self, location: Path, what: str, handler: ErrorHandler) -> None:
        try:
            location.unlink()
        except FileNotFoundError as exc:
            handler.handle(_chain(NotRegisteredError(f"Property does not exist: {what}"), exc))
        except OSError as exc:
            handler.handle(_chain(IOFailure(f"IOException while deleting property: {what}"), exc))
        else:
            logger.debug("Deleted %s", what)

    # ─── Flush ──────────────────────────────────────────────────────────────

    def _enqueue(self, entry: _Entry) -> None:
        with self._dirty_lock:
            self._dirty[entry] = None

    def pending_count(self) -> int:
        """Number of entries waiting for the next pulse. Useful for testing."""
        with self._dirty_lock:
            return len(self._dirty)

    def _save_properties(self, hold: _Entry | None = None) -> DatabaseException | None:
        """Drain the dirty queue and write every drained entry.

        A failure of the held entry is returned to the caller instead of
        being re-queued and passed to the entry's own handler.
        """
        failures: list[tuple[_Entry, DatabaseException]] = []
        held: DatabaseException | None = None

        with self._save_lock:
            # Transfer, so the dirty set is never locked during writes.
            with self._dirty_lock:
                if not self._dirty:
                    return None
                queue = list(self._dirty)
                self._dirty.clear()

            for entry in queue:
                if self._entries.get(entry.prop) is not entry:
                    continue  # unloaded after it was queued
                failure = self._write(entry)
                if failure is None:
                    continue
                if entry is hold:
                    held = failure
                else:
                    failures.append((entry, failure))

        for entry, failure in failures:
            if self._state is DBState.ACTIVE:
                self._enqueue(entry)  # retry on the next pulse
            try:
                entry.handler.handle(failure)
            except Exception:
                logger.exception("Error handler raised while saving %s", entry.describe())
        return held

    def _write(self, entry: _Entry) -> DatabaseException | None:
        location = entry.location
        mode, encoding = ("wb", None) if entry.serializer.binary else ("w", "utf-8")
        try:
            location.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                prefix=f".{location.name}.", suffix=".tmp", dir=location.parent
            )
            try:
                with os.fdopen(fd, mode, encoding=encoding) as fh:
                    entry.serializer.dump(entry.prop._value, fh)
                os.replace(tmp, location)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp)
                raise
        except OSError as exc:
            return _chain(
                IOFailure(f"IOException while saving property: {entry.describe()}"), exc
            )
        except Exception as exc:
            return _chain(
                SerializationError(
                    f"{type(exc).__name__} while saving property: {entry.describe()}"
                ),
                exc,
            )
        logger.debug("Saved %s", entry.describe())
        return None

    def __repr__(self) -> str:
        return f"PropertyDB({self._state.value}, entries={len(self._entries)})"


@contextlib.contextmanager
def open_db(
    interval: float | None = None,
    *,
    scheduler: Scheduler | None = None,
    serializer: Serializer | None = None,
) -> Iterator[tuple[PropertyDB, InitializationToken]]:
    """Initialize a database for the duration of a with-block.

    Usage:
        with open_db(interval=0.5) as (db, token):
            counter = db.initiate(path, "counter", 1, 0)
            counter.set(1)
        # closed and flushed here
    """
    db = PropertyDB(interval, scheduler=scheduler, serializer=serializer)
    token = db.initialize()
    try:
        yield db, token
    finally:
        if db.token_valid(token):
            db.close(token)

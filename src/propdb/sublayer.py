"""SubDB: a named namespace of properties sharing one directory.

Members are stored as SubDB_<name>_<field>_<version>.<ext>. An index property
(SubDB_<name>, version 1) maps each member's field name to its version, so
the namespace can list, version, and delete members that are not loaded.

SubDB is a plain client of PropertyDB: every member is an ordinary registered
property and gets the same write-behind guarantees.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any

from propdb.db import PropertyDB
from propdb.errors import DatabaseException, NotRegisteredError
from propdb.handlers import ErrorHandler, throw_all
from propdb.observable import Mutator, Property

logger = logging.getLogger("propdb.sublayer")

ROOT_VERSION = 1


class SubDB:
    """Key-based container of persisted properties with a persisted index."""

    def __init__(
        self,
        db: PropertyDB,
        name: str,
        directory: str | os.PathLike,
        handler: ErrorHandler | None = None,
    ) -> None:
        self._db = db
        self._name = name
        self._directory = directory
        self._handler = handler or throw_all()
        self._destroyed = False
        self._lock = threading.RLock()

        self._fields: dict[str, Property] = {}
        self._fields_reverse: dict[Property, str] = {}

        # Only this SubDB writes the index.
        self._mutator = Mutator()
        self._index: Property[dict[str, int]] | None = db.initiate(
            directory, self._index_name, ROOT_VERSION, {}, self._handler,
            mutator=self._mutator,
        )
        if self._index is None:
            # The handler swallowed the failure; the namespace is unusable.
            self._destroyed = True

    @property
    def name(self) -> str:
        return self._name

    @property
    def _index_name(self) -> str:
        return f"SubDB_{self._name}"

    def _wrap(self, field_name: str) -> str:
        return f"SubDB_{self._name}_{field_name}"

    def _entries(self) -> dict[str, int]:
        return self._mutator.get(self._index)

    def _check_destroyed(self) -> bool:
        """Report use-after-destroy through the handler. True if destroyed."""
        if self._destroyed:
            self._handler.handle(DatabaseException("SubDB has been destroyed!"))
            return True
        return False

    # --- Queries ---

    def exists(self, field_name: str) -> bool:
        with self._lock:
            if self._destroyed:
                return False
            return field_name in self._entries()

    def exists_version(self, field_name: str, version: int) -> bool:
        with self._lock:
            if self._destroyed:
                return False
            return self._db.exists(self._directory, self._wrap(field_name), version)

    def is_loaded(self, field_name: str) -> bool:
        with self._lock:
            if self._destroyed:
                return False
            return field_name in self._fields

    def version_of(self, field_name: str) -> int | None:
        with self._lock:
            if self._check_destroyed():
                return None
            entries = self._entries()
            if field_name not in entries:
                self._handler.handle(
                    NotRegisteredError(f"Subdatabase property {field_name} does not exist!")
                )
                return None
            return entries[field_name]

    def property_names(self) -> list[str] | None:
        with self._lock:
            if self._check_destroyed():
                return None
            return list(self._entries())

    # --- Loading ---

    def initiate(self, field_name: str, version: int, initial_value: Any) -> Property | None:
        """Load or create a member, recording it in the index."""
        with self._lock:
            if self._check_destroyed():
                return None
            prop = self._db.initiate(
                self._directory, self._wrap(field_name), version, initial_value, self._handler
            )
            if prop is None:
                return None

            self._entries()[field_name] = version
            self._mutator.update(self._index)
            self._fields[field_name] = prop
            self._fields_reverse[prop] = field_name
            return prop

    def loaded_property(self, field_name: str) -> Property | None:
        with self._lock:
            if self._check_destroyed():
                return None
            prop = self._fields.get(field_name)
            if prop is None:
                self._handler.handle(
                    NotRegisteredError(f"Subdatabase property {field_name} is not loaded!")
                )
            return prop

    def get_or_initiate(self, field_name: str, version: int, initial_value: Any) -> Property | None:
        with self._lock:
            if self.is_loaded(field_name):
                return self.loaded_property(field_name)
            return self.initiate(field_name, version, initial_value)

    def get_and_close(self, field_name: str, version: int, initial_value: Any) -> Any:
        """Load a member, unload it again, and return its value."""
        with self._lock:
            if self._check_destroyed():
                return None
            prop = self.get_or_initiate(field_name, version, initial_value)
            if prop is None:
                return None
            self.unload_property(prop)
            return prop.get()

    # --- Unloading ---

    def unload(self, field_name: str) -> None:
        with self._lock:
            if self._check_destroyed():
                return
            prop = self._fields.get(field_name)
            if prop is None:
                self._handler.handle(
                    NotRegisteredError(f"Subdatabase property {field_name} is not loaded!")
                )
                return
            self._db.unload(prop, self._handler)
            self._forget(prop)

    def unload_property(self, prop: Property) -> None:
        with self._lock:
            if self._check_destroyed():
                return
            if prop not in self._fields_reverse:
                self._handler.handle(
                    NotRegisteredError("Requested property does not exist in this subdatabase!")
                )
                return
            self._db.unload(prop, self._handler)
            self._forget(prop)

    # --- Deleting ---

    def delete(self, field_name: str) -> None:
        """Delete a member by name, loaded or not."""
        with self._lock:
            if self._check_destroyed():
                return
            entries = self._entries()
            if field_name not in entries:
                self._handler.handle(
                    NotRegisteredError(f"Subdatabase property {field_name} does not exist!")
                )
                return
            self._db.delete_field(
                self._directory, self._wrap(field_name), entries[field_name], self._handler
            )
            self._drop_from_index(field_name)
            prop = self._fields.get(field_name)
            if prop is not None:
                self._forget(prop)

    def delete_property(self, prop: Property) -> None:
        with self._lock:
            if self._check_destroyed():
                return
            field_name = self._fields_reverse.get(prop)
            if field_name is None:
                self._handler.handle(
                    NotRegisteredError("Requested property does not exist in this subdatabase!")
                )
                return
            self._db.delete(prop, self._handler)
            self._drop_from_index(field_name)
            self._forget(prop)

    def destroy(self) -> None:
        """Delete every member and the index. The SubDB is unusable afterwards."""
        with self._lock:
            if self._check_destroyed():
                return
            for prop in list(self._fields_reverse):
                self.delete_property(prop)
            for field_name in list(self._entries()):
                self.delete(field_name)
            self._destroyed = True
            self._db.delete(self._index, self._handler)
            logger.debug("Destroyed SubDB %s", self._name)

    def _drop_from_index(self, field_name: str) -> None:
        self._entries().pop(field_name, None)
        self._mutator.update(self._index)

    def _forget(self, prop: Property) -> None:
        field_name = self._fields_reverse.pop(prop, None)
        if field_name is not None:
            self._fields.pop(field_name, None)

    def __repr__(self) -> str:
        state = "destroyed" if self._destroyed else f"loaded={len(self._fields)}"
        return f"SubDB({self._name!r}, {state})"

"""Initialization tokens: capability handles for privileged database calls.

The caller that initializes a PropertyDB receives its token. Possessing a
valid token is the authorization for force_save() and close(). A token is
stamped with its database and a generation number; generations come from a
process-wide counter and never repeat, so a token from a closed database
can never match a later one.
"""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from propdb.db import PropertyDB

# itertools.count is thread-safe (C-level GIL atomic)
_generation_counter = itertools.count(1)


def new_generation() -> int:
    return next(_generation_counter)


class InitializationToken:
    """Opaque handle granting administrative access to one database instance."""

    __slots__ = ("_db", "_generation")

    def __init__(self, db: PropertyDB, generation: int) -> None:
        self._db = db
        self._generation = generation

    @property
    def generation(self) -> int:
        return self._generation

    def valid(self) -> bool:
        """True while this token can still control its database."""
        return self._db.token_valid(self)

    def __repr__(self) -> str:
        state = "valid" if self.valid() else "stale"
        return f"InitializationToken(gen={self._generation}, {state})"

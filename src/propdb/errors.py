"""Exception taxonomy for the database.

Every failure the database reports derives from DatabaseException.
InitializationError is a contract violation and is always raised directly;
the rest are delivered through the caller's ErrorHandler.
"""

from __future__ import annotations


class DatabaseException(Exception):
    """Raised for errors related to (un)loading, deleting, and saving properties."""


class InitializationError(DatabaseException):
    """Double initialization, a stale or invalid token, or an inactive database."""


class DuplicateRegistrationError(DatabaseException):
    """The same file location was registered twice."""


class NotRegisteredError(DatabaseException):
    """Operation on a property that is not loaded or does not exist."""


class SerializationError(DatabaseException):
    """Stored data could not be encoded or decoded into the expected value."""


class IOFailure(DatabaseException):
    """Filesystem error while reading, writing, or deleting a property file."""

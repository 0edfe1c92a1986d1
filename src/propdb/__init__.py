"""propdb: write-behind persistence for observable Python values."""

from importlib.metadata import version as _version

__version__ = _version("propdb")

from propdb.observable import Property, Mutator, EventType, AccessViolation
from propdb.errors import (
    DatabaseException,
    InitializationError,
    DuplicateRegistrationError,
    NotRegisteredError,
    SerializationError,
    IOFailure,
)
from propdb.handlers import ErrorHandler, throw_all, log_all, forward_handled, custom
from propdb.serializers import Serializer, PickleSerializer, JSONSerializer
from propdb.token import InitializationToken
from propdb.scheduler import Scheduler, IntervalScheduler, ManualScheduler
from propdb.db import PropertyDB, DBState, open_db, initialized, active_db
from propdb.sublayer import SubDB
# textual is not auto-imported; opt-in only

__all__ = [
    "Property",
    "Mutator",
    "EventType",
    "AccessViolation",
    "DatabaseException",
    "InitializationError",
    "DuplicateRegistrationError",
    "NotRegisteredError",
    "SerializationError",
    "IOFailure",
    "ErrorHandler",
    "throw_all",
    "log_all",
    "forward_handled",
    "custom",
    "Serializer",
    "PickleSerializer",
    "JSONSerializer",
    "InitializationToken",
    "Scheduler",
    "IntervalScheduler",
    "ManualScheduler",
    "PropertyDB",
    "DBState",
    "open_db",
    "initialized",
    "active_db",
    "SubDB",
]

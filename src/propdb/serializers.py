"""Serializers: how a property value becomes file contents and back.

The database treats the format as a plug-in. A serializer names its file
extension, whether it works on bytes or text, and how to dump and load one
value through an open file object.
"""

from __future__ import annotations

import json
import pickle
from abc import ABC, abstractmethod
from typing import IO, Any


class Serializer(ABC):
    """Encode and decode a single value."""

    extension: str = "property"
    binary: bool = True

    @abstractmethod
    def dump(self, value: Any, fh: IO) -> None: ...

    @abstractmethod
    def load(self, fh: IO) -> Any: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(.{self.extension})"


class PickleSerializer(Serializer):
    """Default format: any picklable value, stored in <name>_<version>.property."""

    extension = "property"
    binary = True

    def __init__(self, protocol: int = pickle.HIGHEST_PROTOCOL) -> None:
        self.protocol = protocol

    def dump(self, value: Any, fh: IO[bytes]) -> None:
        pickle.dump(value, fh, protocol=self.protocol)

    def load(self, fh: IO[bytes]) -> Any:
        return pickle.load(fh)


class JSONSerializer(Serializer):
    """Human-readable format for JSON-compatible values (tuples come back as lists)."""

    extension = "json"
    binary = False

    def __init__(self, indent: int | None = None, sort_keys: bool = False) -> None:
        self.indent = indent
        self.sort_keys = sort_keys

    def dump(self, value: Any, fh: IO[str]) -> None:
        json.dump(value, fh, indent=self.indent, sort_keys=self.sort_keys)

    def load(self, fh: IO[str]) -> Any:
        return json.load(fh)

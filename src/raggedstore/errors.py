"""Exception hierarchy for raggedstore.

Every error keeps the context needed to act on it (file path and line,
sample key, offending field or region) as attributes as well as in the
message.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .ragged import RaggedResult


class RaggedStoreError(Exception):
    """Base class for all raggedstore errors."""


class SchemaError(RaggedStoreError, ValueError):
    """A raw row does not fit its declared dialect."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        dialect: str | None = None,
        path: str | None = None,
        line_number: int | None = None,
    ):
        self.field = field
        self.dialect = dialect
        self.path = path
        self.line_number = line_number
        super().__init__(message)

    def __str__(self) -> str:
        msg = super().__str__()
        if self.path is not None:
            where = f"{self.path}:{self.line_number}" if self.line_number else self.path
            msg = f"{where}: {msg}"
        return msg


class RecordImportError(RaggedStoreError):
    """A store write failed while importing a file."""

    def __init__(self, message: str, *, path: str, sample_key: str, records_written: int):
        self.path = path
        self.sample_key = sample_key
        self.records_written = records_written
        super().__init__(
            f"{message} (file={path}, sample={sample_key}, committed={records_written})"
        )


class StoreConnectionError(RaggedStoreError, ConnectionError):
    """The document store could not be reached at container construction."""

    def __init__(self, message: str, *, uri: str):
        self.uri = uri
        super().__init__(f"{message} (uri={uri})")


class QueryError(RaggedStoreError):
    """A single-collection query failed."""

    def __init__(self, message: str, *, collection: str | None = None, region: Any = None):
        self.collection = collection
        self.region = region
        parts = [message]
        if collection is not None:
            parts.append(f"collection={collection}")
        if region is not None:
            parts.append(f"region={region}")
        super().__init__(" | ".join(parts))


class PartialQueryError(RaggedStoreError):
    """At least one per-sample query of a fan-out failed.

    ``results`` still holds every sample that succeeded, in input order.
    """

    def __init__(self, results: "RaggedResult", failures: dict[str, BaseException]):
        self.results = results
        self.failures = failures
        self.sample_key = next(iter(failures))
        summary = ", ".join(f"{k}: {e}" for k, e in failures.items())
        super().__init__(
            f"{len(failures)} of {len(failures) + len(results)} sample queries failed "
            f"for {results.region}: {summary}"
        )


class UnknownSampleError(RaggedStoreError, KeyError):
    """Sample key not present in the metadata table."""

    def __init__(self, sample_key: str):
        self.sample_key = sample_key
        super().__init__(sample_key)

    def __str__(self) -> str:
        return f"Unknown sample '{self.sample_key}'"

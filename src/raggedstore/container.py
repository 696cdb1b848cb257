"""Sample metadata bound to one shared document-store connection."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

import polars as pl
from loguru import logger
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from .core import GenomicRegion, ImportConfig, StoreConfig
from .dialects import DEFAULT_DIALECT, Dialect, dialect_for
from .errors import StoreConnectionError, UnknownSampleError
from .importer import ImportReport, import_file
from .ragged import RaggedResult, overlaps_across_samples

Predicate = pl.Expr | Callable[[dict[str, Any]], bool]


def _as_frame(metadata: Any, key_column: str) -> pl.DataFrame:
    if metadata is None:
        return pl.DataFrame({key_column: pl.Series([], dtype=pl.Utf8)})
    if isinstance(metadata, pl.DataFrame):
        frame = metadata
    elif isinstance(metadata, Mapping):
        frame = pl.DataFrame(dict(metadata))
    else:
        frame = pl.from_dicts(list(metadata), infer_schema_length=None)

    if key_column not in frame.columns:
        raise ValueError(f"Metadata lacks the sample key column '{key_column}'")
    keys = frame[key_column]
    if keys.null_count():
        raise ValueError(f"Metadata column '{key_column}' contains nulls")
    if keys.n_unique() != frame.height:
        dupes = keys.filter(keys.is_duplicated()).unique().to_list()
        raise ValueError(f"Duplicate sample keys in metadata: {dupes}")
    return frame.with_columns(pl.col(key_column).cast(pl.Utf8))


class SampleContainer:
    """Per-sample metadata table plus the store connection its samples live in.

    The container opens exactly one client on construction and every query
    issued through it reuses that client; ``MongoClient`` pools sockets
    internally and is safe to share across the fan-out worker threads.
    Metadata lookups are in-memory once constructed.

    Parameters
    ----------
    metadata : polars.DataFrame | mapping of columns | iterable of row dicts
        One row per sample, keyed by ``key_column``. An optional
        ``collection`` column overrides the collection a sample reads from.
    config : StoreConfig, optional
        Connection URI, database name, timeouts and worker count.
    client_factory : callable, optional
        Client constructor (default ``pymongo.MongoClient``), called once as
        ``client_factory(uri, serverSelectionTimeoutMS=..., socketTimeoutMS=...)``.
    """

    def __init__(
        self,
        metadata: Any = None,
        config: StoreConfig | None = None,
        *,
        client_factory: Callable[..., Any] | None = None,
        key_column: str = "sample",
    ):
        self.config = config or StoreConfig()
        self.key_column = key_column
        self._set_metadata(_as_frame(metadata, key_column))

        options: dict[str, Any] = {"serverSelectionTimeoutMS": self.config.server_selection_timeout_ms}
        if self.config.socket_timeout_ms is not None:
            options["socketTimeoutMS"] = self.config.socket_timeout_ms
        try:
            self.client = (client_factory or MongoClient)(self.config.uri, **options)
        except PyMongoError as e:
            raise StoreConnectionError(f"Invalid store settings: {e}", uri=self.config.uri) from e
        try:
            self.client.admin.command("ping")
        except PyMongoError as e:
            self.client.close()
            logger.error(f"Cannot reach document store at {self.config.uri}: {e}")
            raise StoreConnectionError(f"Document store unreachable: {e}", uri=self.config.uri) from e

        self.database = self.client[self.config.database]
        logger.info(f"Connected to {self.config.uri}/{self.config.database} ({len(self)} samples)")

    @classmethod
    def from_store(
        cls,
        config: StoreConfig | None = None,
        *,
        client_factory: Callable[..., Any] | None = None,
        key_column: str = "sample",
    ) -> "SampleContainer":
        """Build a container whose metadata lists every collection in the database."""
        container = cls(None, config, client_factory=client_factory, key_column=key_column)
        try:
            names = sorted(
                n for n in container.database.list_collection_names() if not n.startswith("system.")
            )
        except PyMongoError as e:
            container.close()
            raise StoreConnectionError(f"Cannot list collections: {e}", uri=container.config.uri) from e
        container._set_metadata(pl.DataFrame({key_column: pl.Series(names, dtype=pl.Utf8)}))
        return container

    # ------------------------------------------------------------------
    # Metadata access
    # ------------------------------------------------------------------
    def _set_metadata(self, frame: pl.DataFrame) -> None:
        self._metadata = frame
        self._index = {k: i for i, k in enumerate(frame[self.key_column].to_list())}

    @property
    def metadata(self) -> pl.DataFrame:
        return self._metadata

    @property
    def samples(self) -> list[str]:
        return self._metadata[self.key_column].to_list()

    def _row(self, sample_key: str) -> int:
        try:
            return self._index[sample_key]
        except KeyError:
            raise UnknownSampleError(sample_key) from None

    def samples_where(self, predicate: Predicate | None = None, **equals: Any) -> list[str]:
        """Sample keys matching a predicate, in metadata row order.

        ``predicate`` is either a polars expression or a callable taking a row
        dict. Keyword arguments add column equality tests, e.g.
        ``samples_where(format="broadPeak")``.
        """
        for column in equals:
            if column not in self._metadata.columns:
                raise KeyError(f"Unknown metadata column '{column}'")
        frame = self._metadata
        for column, value in equals.items():
            frame = frame.filter(pl.col(column) == value)
        if predicate is None:
            return frame[self.key_column].to_list()
        if isinstance(predicate, pl.Expr):
            return frame.filter(predicate)[self.key_column].to_list()
        return [row[self.key_column] for row in frame.iter_rows(named=True) if predicate(row)]

    def collection_name_for(self, sample_key: str) -> str:
        """Collection backing ``sample_key`` (the key itself unless overridden)."""
        row = self._row(sample_key)
        if "collection" in self._metadata.columns:
            override = self._metadata["collection"][row]
            if override:
                return str(override)
        return sample_key

    def metadata_subset(self, sample_keys: Sequence[str]) -> pl.DataFrame:
        """Metadata rows for ``sample_keys``, in the given order."""
        rows = [self._row(k) for k in sample_keys]
        return self._metadata[rows, :]

    def add_sample(self, sample_key: str, **annotations: Any) -> None:
        """Register a sample or update columns of an existing one."""
        if not sample_key:
            raise ValueError("sample_key must be non-empty")
        rows = self._metadata.to_dicts()
        if sample_key in self._index:
            rows[self._index[sample_key]].update(annotations)
        else:
            rows.append({self.key_column: sample_key, **annotations})
        frame = pl.from_dicts(rows, infer_schema_length=None)
        if frame.columns[0] != self.key_column:
            frame = frame.select(self.key_column, pl.exclude(self.key_column))
        self._set_metadata(frame)

    # ------------------------------------------------------------------
    # Store-backed operations
    # ------------------------------------------------------------------
    def import_sample(
        self,
        path: str | Path,
        sample_key: str,
        dialect: str | Dialect = DEFAULT_DIALECT,
        config: ImportConfig | None = None,
        **annotations: Any,
    ) -> ImportReport:
        """Import a file into this container's database and register its metadata."""
        dialect = dialect_for(dialect)
        report = import_file(path, sample_key, dialect, self.database, config)
        self.add_sample(sample_key, format=dialect.name, **annotations)
        return report

    def collection_sizes(self, sample_keys: Iterable[str] | None = None) -> dict[str, int]:
        keys = list(sample_keys) if sample_keys is not None else self.samples
        return {k: int(self.database[self.collection_name_for(k)].count_documents({})) for k in keys}

    def overlaps(
        self,
        region: GenomicRegion | str,
        sample_keys: Sequence[str] | None = None,
        skip: int = 0,
        limit: int = 0,
        **kwargs: Any,
    ) -> RaggedResult:
        """Ragged overlap query over ``sample_keys`` (all samples by default)."""
        keys = self.samples if sample_keys is None else list(sample_keys)
        return overlaps_across_samples(self, keys, region, skip, limit, **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "SampleContainer":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __len__(self) -> int:
        return self._metadata.height

    def __contains__(self, sample_key: object) -> bool:
        return sample_key in self._index

    def __repr__(self) -> str:
        return f"SampleContainer({len(self)} samples, {self.config})"

"""Interval file import into per-sample document collections.

Each file becomes (or extends) one collection named after its sample key.
Rows are normalized through the dialect registry and written in
``insert_many`` batches. Import is at-least-once: a failure leaves every
batch written before it in place, and re-importing the same file appends
duplicates.
"""
from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Iterable

import polars as pl
import tqdm
from loguru import logger
from pydantic import BaseModel, Field
from pymongo import ASCENDING
from pymongo.errors import BulkWriteError, PyMongoError

from .core import ImportConfig
from .dialects import DEFAULT_DIALECT, Dialect, dialect_for, normalize
from .errors import RecordImportError, SchemaError
from .utils import iter_lines

OVERLAP_INDEX = [("chrom", ASCENDING), ("start", ASCENDING), ("end", ASCENDING)]


class ImportReport(BaseModel):
    """Audit record of one file import."""
    model_config = {"validate_assignment": True}

    path: str
    sample_key: str
    dialect: str
    records_written: int = Field(default=0, ge=0)
    batches: int = Field(default=0, ge=0)
    lines_skipped: int = Field(default=0, ge=0)
    seconds: float = Field(default=0.0, ge=0.0)

    @property
    def records_per_second(self) -> float:
        return self.records_written / self.seconds if self.seconds > 0 else 0.0

    def __str__(self) -> str:
        return (
            f"{self.sample_key}: {self.records_written:,} {self.dialect} records "
            f"in {self.batches} batches ({self.seconds:.2f}s)"
        )


def _flush(collection: Any, batch: list[dict], report: ImportReport) -> None:
    try:
        collection.insert_many(batch, ordered=True)
    except BulkWriteError as e:
        report.records_written += int(e.details.get("nInserted", 0))
        raise RecordImportError(
            f"Batch write failed: {e}",
            path=report.path,
            sample_key=report.sample_key,
            records_written=report.records_written,
        ) from e
    except PyMongoError as e:
        raise RecordImportError(
            f"Batch write failed: {e}",
            path=report.path,
            sample_key=report.sample_key,
            records_written=report.records_written,
        ) from e
    report.records_written += len(batch)
    report.batches += 1
    logger.debug(f"{report.sample_key}: wrote batch {report.batches} ({len(batch)} records)")


def _ensure_index(collection: Any, report: ImportReport) -> None:
    try:
        collection.create_index(OVERLAP_INDEX, name="overlap")
    except PyMongoError as e:
        raise RecordImportError(
            f"Index creation failed: {e}",
            path=report.path,
            sample_key=report.sample_key,
            records_written=report.records_written,
        ) from e


def _check_field_set(collection: Any, dialect: Dialect, report: ImportReport) -> None:
    """Refuse to mix field sets: an existing collection must match ``dialect``."""
    try:
        existing = collection.find_one({}, {"_id": 0})
    except PyMongoError as e:
        raise RecordImportError(
            f"Cannot inspect existing collection: {e}",
            path=report.path,
            sample_key=report.sample_key,
            records_written=0,
        ) from e
    if existing is None:
        return
    expected = set(dialect.field_names)
    mismatch = sorted(set(existing) ^ expected)
    if mismatch:
        raise SchemaError(
            f"Collection '{report.sample_key}' already holds records with fields "
            f"{sorted(existing)}; dialect {dialect.name} writes {list(dialect.field_names)}",
            field=mismatch[0],
            dialect=dialect.name,
            path=report.path,
        )


def import_file(
    path: str | Path,
    sample_key: str,
    dialect: str | Dialect = DEFAULT_DIALECT,
    store: Any = None,
    config: ImportConfig | None = None,
) -> ImportReport:
    """Import one interval file into the collection ``sample_key``.

    Parameters
    ----------
    path : str | Path
        Line-oriented interval file; ``.gz`` files are decompressed on the fly.
    sample_key : str
        Sample identifier; also the target collection name.
    dialect : str | Dialect
        Column layout of the file.
    store : pymongo Database
        Database handle the collection is created in.
    config : ImportConfig, optional
        Batch size, comment handling and indexing options.

    Raises
    ------
    SchemaError
        On the first row that does not fit the dialect (carries path and line).
        Also raised for undecodable bytes, and when the collection already
        holds records of a different field set.
    RecordImportError
        When a batch write or the index build fails.
    """
    if store is None:
        raise ValueError("A database handle is required")
    if not sample_key:
        raise ValueError("sample_key must be non-empty")
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Interval file not found: {path}")

    dialect = dialect_for(dialect)
    config = config or ImportConfig()
    collection = store[sample_key]
    report = ImportReport(path=str(path), sample_key=sample_key, dialect=dialect.name)
    _check_field_set(collection, dialect, report)
    start_time = time.perf_counter()
    logger.info(f"Importing {path.name} as '{sample_key}' ({dialect.name})")

    batch: list[dict] = []
    try:
        for line_number, line in iter_lines(path):
            if not line.strip() or line.startswith(config.comment_prefixes):
                report.lines_skipped += 1
                continue
            fields = line.split(config.delimiter) if config.delimiter else line.split()
            try:
                record = normalize(fields, dialect)
            except SchemaError as e:
                e.path = str(path)
                e.line_number = line_number
                raise
            batch.append(record.to_document())
            if len(batch) >= config.batch_size:
                _flush(collection, batch, report)
                batch = []
    except SchemaError as e:
        e.dialect = e.dialect or dialect.name
        logger.error(f"Aborting import of '{sample_key}' after {report.records_written} records: {e}")
        raise
    if batch:
        _flush(collection, batch, report)

    if config.create_index and report.records_written:
        _ensure_index(collection, report)

    report.seconds = time.perf_counter() - start_time
    logger.info(f"Imported {report}")
    return report


def import_manifest(
    manifest: pl.DataFrame | Iterable[tuple[str | Path, str, str]],
    store: Any,
    config: ImportConfig | None = None,
    show_progress: bool = False,
) -> list[ImportReport]:
    """Import several files described by (path, sample, dialect) rows.

    A polars manifest must provide ``path`` and ``sample`` columns; a
    ``dialect`` column is optional. Files are imported sequentially and the
    first failure propagates.
    """
    if isinstance(manifest, pl.DataFrame):
        missing = {"path", "sample"} - set(manifest.columns)
        if missing:
            raise ValueError(f"Manifest lacks columns: {sorted(missing)}")
        if "dialect" not in manifest.columns:
            manifest = manifest.with_columns(pl.lit(DEFAULT_DIALECT).alias("dialect"))
        rows = list(manifest.select("path", "sample", "dialect").iter_rows())
    else:
        rows = list(manifest)

    iterator = tqdm.tqdm(rows, desc="import") if show_progress else rows
    return [import_file(p, s, d or DEFAULT_DIALECT, store, config) for p, s, d in iterator]

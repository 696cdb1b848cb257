"""Ragged multi-sample overlap queries.

A :class:`RaggedResult` maps each queried sample to the records that
overlapped the query region in that sample's collection. Row counts differ
freely between samples; a sample with no hits maps to an empty list.
"""
from __future__ import annotations

from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING, Any, Iterator, Sequence

import polars as pl
from loguru import logger

from .core import GenomicRegion, IntervalRecord
from .errors import PartialQueryError
from .query import _as_region, query_region

if TYPE_CHECKING:
    from .container import SampleContainer

_CORE_SCHEMA = {"chrom": pl.Utf8, "start": pl.Int64, "end": pl.Int64}


class RaggedResult(Mapping):
    """Per-sample record lists for one query region.

    Holds no reference to the store; building matrices from it never
    touches the database again.
    """

    def __init__(self, region: GenomicRegion, records: Mapping[str, Sequence[IntervalRecord]]):
        self.region = region
        self._records: dict[str, list[IntervalRecord]] = {k: list(v) for k, v in records.items()}

    def __getitem__(self, sample_key: str) -> list[IntervalRecord]:
        return self._records[sample_key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def samples(self) -> list[str]:
        return list(self._records)

    def lengths(self) -> dict[str, int]:
        """Record count per sample."""
        return {k: len(v) for k, v in self._records.items()}

    @property
    def total(self) -> int:
        return sum(len(v) for v in self._records.values())

    def table(self, sample_key: str) -> pl.DataFrame:
        """Records of one sample as a polars table."""
        records = self._records[sample_key]
        if not records:
            return pl.DataFrame(schema=_CORE_SCHEMA)
        return pl.from_dicts([r.to_document() for r in records], infer_schema_length=None)

    def to_polars(self) -> pl.DataFrame:
        """Long-form table of every record with a leading ``sample`` column."""
        frames = [
            self.table(k).with_columns(pl.lit(k).alias("sample")).select("sample", pl.exclude("sample"))
            for k in self._records
        ]
        if not frames:
            return pl.DataFrame(schema={"sample": pl.Utf8, **_CORE_SCHEMA})
        return pl.concat(frames, how="diagonal_relaxed")

    def __repr__(self) -> str:
        counts = ", ".join(f"{k}={n}" for k, n in self.lengths().items())
        return f"RaggedResult({self.region}: {counts})"


def overlaps_across_samples(
    container: "SampleContainer",
    sample_keys: Sequence[str],
    region: GenomicRegion | Mapping[str, Any] | tuple | str,
    skip: int = 0,
    limit: int = 0,
    *,
    filters: Mapping[str, Any] | None = None,
    max_workers: int | None = None,
) -> RaggedResult:
    """Query ``region`` in every sample's collection concurrently.

    Per-sample queries run on a bounded thread pool sharing the container's
    client; each worker writes only its own sample's slot. ``skip`` and
    ``limit`` apply per sample. Nothing is retried.

    Raises
    ------
    PartialQueryError
        If any sample query failed; ``results`` holds the samples that
        succeeded and ``failures`` the per-sample exceptions.
    UnknownSampleError
        If a sample key is not in the container (checked before any query).
    """
    region = _as_region(region)
    keys = list(sample_keys)
    if len(set(keys)) != len(keys):
        raise ValueError("Duplicate sample keys in query")
    collections = {k: container.collection_name_for(k) for k in keys}
    if not keys:
        return RaggedResult(region, {})

    workers = max(1, min(max_workers or container.config.max_workers, len(keys)))
    logger.debug(f"Querying {region} across {len(keys)} samples with {workers} workers")

    results: dict[str, list[IntervalRecord]] = {}
    failures: dict[str, BaseException] = {}
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(
                query_region,
                container.database,
                collections[k],
                region,
                skip,
                limit,
                filters=filters,
                timeout_ms=container.config.query_timeout_ms,
            ): k
            for k in keys
        }
        for future in as_completed(futures):
            key = futures[future]
            try:
                results[key] = future.result()
            except Exception as e:
                logger.warning(f"Query for sample '{key}' failed: {e}")
                failures[key] = e

    ordered = RaggedResult(region, {k: results[k] for k in keys if k in results})
    if failures:
        raise PartialQueryError(ordered, {k: failures[k] for k in keys if k in failures})
    return ordered

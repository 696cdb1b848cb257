"""Overlap queries against a single sample collection."""
from __future__ import annotations

from typing import Any, Mapping

from loguru import logger
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from .core import GenomicRegion, IntervalRecord
from .errors import QueryError
from .utils import parse_region

_CORE_KEYS = frozenset({"chrom", "start", "end"})


def _as_region(region: GenomicRegion | Mapping[str, Any] | tuple | str, collection: str | None = None) -> GenomicRegion:
    if isinstance(region, GenomicRegion):
        return region
    if isinstance(region, str):
        return parse_region(region)
    try:
        if isinstance(region, Mapping):
            return GenomicRegion(**region)
        chrom, start, end = region
        return GenomicRegion(chrom=chrom, start=start, end=end)
    except (ValidationError, TypeError, ValueError) as e:
        raise QueryError(f"Malformed region: {e}", collection=collection, region=region) from e


def region_filter(region: GenomicRegion, filters: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Build the store predicate for half-open overlap with ``region``.

    ``chrom == region.chrom AND start < region.end AND end > region.start``,
    plus simple equality filters on other fields. The three overlap terms
    line up with the (chrom, start, end) index built at import.
    """
    predicate: dict[str, Any] = {
        "chrom": region.chrom,
        "start": {"$lt": region.end},
        "end": {"$gt": region.start},
    }
    if filters:
        clash = _CORE_KEYS & set(filters)
        if clash:
            raise QueryError(f"Filters may not constrain core fields: {sorted(clash)}", region=region)
        predicate.update(filters)
    return predicate


def query_region(
    store: Any,
    collection_name: str,
    region: GenomicRegion | Mapping[str, Any] | tuple | str,
    skip: int = 0,
    limit: int = 0,
    *,
    filters: Mapping[str, Any] | None = None,
    timeout_ms: int | None = None,
) -> list[IntervalRecord]:
    """Return records of ``collection_name`` overlapping ``region``.

    ``skip`` and ``limit`` go to the store unchanged (``limit=0`` means no
    limit). Records come back in the store's natural order for the
    collection; nothing is sorted client-side. A region outside the
    collection's span yields an empty list. ``timeout_ms`` becomes the
    cursor's server-side time limit; exceeding it raises :class:`QueryError`.
    """
    region = _as_region(region, collection_name)
    if skip < 0 or limit < 0:
        raise QueryError(f"skip/limit must be >= 0 (got {skip}/{limit})", collection=collection_name, region=region)
    predicate = region_filter(region, filters)

    try:
        cursor = store[collection_name].find(predicate, {"_id": 0}, skip=skip, limit=limit)
        if timeout_ms is not None:
            cursor = cursor.max_time_ms(timeout_ms)
        records = [IntervalRecord.from_document(doc) for doc in cursor]
    except PyMongoError as e:
        raise QueryError(f"Store query failed: {e}", collection=collection_name, region=region) from e
    except ValidationError as e:
        raise QueryError(f"Malformed document: {e}", collection=collection_name, region=region) from e
    logger.debug(f"{collection_name} {region}: {len(records)} records")
    return records


def count_region(
    store: Any,
    collection_name: str,
    region: GenomicRegion | Mapping[str, Any] | tuple | str,
    *,
    filters: Mapping[str, Any] | None = None,
) -> int:
    """Count overlapping records without materializing them."""
    region = _as_region(region, collection_name)
    try:
        return int(store[collection_name].count_documents(region_filter(region, filters)))
    except PyMongoError as e:
        raise QueryError(f"Store count failed: {e}", collection=collection_name, region=region) from e

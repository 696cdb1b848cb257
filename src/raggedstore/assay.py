"""Materialize ragged per-sample records as fixed-shape assay matrices.

Three alignment policies:

* ``sparse``  - one column per distinct (chrom, start, end) observed in any
  sample; a cell holds the sample's value for exactly that interval.
* ``compact`` - one column per disjoint piece of the overlay of all samples'
  intervals; a cell holds the value of the sample's record covering the
  piece. When several records of one sample cover a piece, the first in the
  sample's record order (the collection order returned by the store) wins.
* ``reduced`` - one column per caller-supplied sub-region; a cell holds a
  reduction of every overlapping record of the sample.

Numeric values give a float matrix with ``NaN`` for absent cells; any other
value type gives an object matrix with ``None`` for absent cells. All
builders are pure functions of a :class:`RaggedResult`.
"""
from __future__ import annotations

from numbers import Number
from typing import Any, Callable, Sequence

import numpy as np
import polars as pl
from loguru import logger
from numba import jit

from .core import GenomicRegion, IntervalRecord
from .errors import QueryError
from .query import _as_region
from .ragged import RaggedResult

Interval = tuple[str, int, int]
Reducer = Callable[[list[Any]], Any]


# --------------------------------------------------------------------------------------
# Kernels
# --------------------------------------------------------------------------------------


@jit(nopython=True, cache=True)
def first_covering(
    piece_starts: np.ndarray,
    piece_ends: np.ndarray,
    rec_starts: np.ndarray,
    rec_ends: np.ndarray,
) -> np.ndarray:
    """Index of the first record covering each piece, or -1.

    Pieces must be sorted, disjoint and cut at every record boundary, so the
    pieces covered by a record form one contiguous run.
    """
    out = np.full(piece_starts.size, -1, dtype=np.int64)
    for i in range(rec_starts.size):
        lo = np.searchsorted(piece_starts, rec_starts[i], side="left")
        hi = np.searchsorted(piece_ends, rec_ends[i], side="right")
        for j in range(lo, hi):
            if out[j] == -1:
                out[j] = i
    return out


def disjoin(intervals: Sequence[Interval]) -> list[Interval]:
    """Minimal partition of the union of ``intervals`` into disjoint pieces.

    Every input interval is exactly a union of output pieces. Zero-length
    intervals contribute nothing.
    """
    by_chrom: dict[str, list[tuple[int, int]]] = {}
    for chrom, start, end in intervals:
        if end > start:
            by_chrom.setdefault(chrom, []).append((start, end))

    pieces: list[Interval] = []
    for chrom in sorted(by_chrom):
        spans = np.asarray(by_chrom[chrom], dtype=np.int64)
        cuts = np.unique(spans.ravel())
        starts, ends = cuts[:-1], cuts[1:]
        covered = first_covering(starts, ends, spans[:, 0].copy(), spans[:, 1].copy()) >= 0
        pieces.extend((chrom, int(s), int(e)) for s, e in zip(starts[covered], ends[covered]))
    return pieces


# --------------------------------------------------------------------------------------
# Matrix container
# --------------------------------------------------------------------------------------


class AssayMatrix:
    """Samples x columns matrix with row and column labels.

    Attributes
    ----------
    values : np.ndarray
        float64 (absent = NaN) or object (absent = None), shape
        ``(len(samples), len(intervals))``.
    samples : list[str]
        Row labels (sample keys), in query order.
    intervals : list[tuple[str, int, int]]
        Column identities.
    policy : str
        ``sparse``, ``compact`` or ``reduced``.
    field : str | None
        Record field the cells were taken from (None = presence indicator).
    """

    def __init__(
        self,
        values: np.ndarray,
        samples: Sequence[str],
        intervals: Sequence[Interval],
        policy: str,
        field: str | None = None,
    ):
        if values.shape != (len(samples), len(intervals)):
            raise ValueError(f"Matrix shape {values.shape} does not match labels ({len(samples)}, {len(intervals)})")
        self.values = values
        self.samples = list(samples)
        self.intervals = list(intervals)
        self.policy = policy
        self.field = field

    @property
    def columns(self) -> list[str]:
        return [f"{c}:{s}-{e}" for c, s, e in self.intervals]

    @property
    def shape(self) -> tuple[int, int]:
        return self.values.shape

    @property
    def is_numeric(self) -> bool:
        return self.values.dtype != object

    @property
    def absent(self) -> Any:
        return np.nan if self.is_numeric else None

    def absent_mask(self) -> np.ndarray:
        if self.is_numeric:
            return np.isnan(self.values)
        return np.vectorize(lambda v: v is None, otypes=[bool])(self.values).reshape(self.shape)

    def cell(self, sample_key: str, column: str) -> Any:
        return self.values[self.samples.index(sample_key), self.columns.index(column)]

    def row(self, sample_key: str) -> np.ndarray:
        return self.values[self.samples.index(sample_key)]

    def to_polars(self) -> pl.DataFrame:
        """Row-labelled frame: a ``sample`` column then one column per interval."""
        data: dict[str, Any] = {"sample": pl.Series(self.samples, dtype=pl.Utf8)}
        for j, label in enumerate(self.columns):
            column = self.values[:, j]
            data[label] = column if self.is_numeric else column.tolist()
        return pl.DataFrame(data)

    def __repr__(self) -> str:
        return f"AssayMatrix({self.policy}, {self.shape[0]} samples x {self.shape[1]} columns, field={self.field})"


# --------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------


def _value(record: IntervalRecord, field: str | None) -> Any:
    return 1.0 if field is None else record.get(field)


def _is_number(v: Any) -> bool:
    return isinstance(v, Number) and not isinstance(v, bool)


def _finalize(cells: np.ndarray) -> np.ndarray:
    """Object cells -> float matrix when every present value is numeric."""
    present = [v for v in cells.ravel() if v is not None]
    if all(_is_number(v) for v in present):
        out = np.full(cells.shape, np.nan, dtype=np.float64)
        for idx, v in np.ndenumerate(cells):
            if v is not None:
                out[idx] = float(v)
        return out
    return cells


def _check_field(result: RaggedResult, field: str | None) -> None:
    """Reject a field no record carries; records merely lacking it read as absent."""
    if field is None or field in ("chrom", "start", "end"):
        return
    records = [r for rs in result.values() for r in rs]
    if records and not any(field in (r.model_extra or {}) for r in records):
        raise KeyError(f"Field '{field}' not present in any record")


# --------------------------------------------------------------------------------------
# Policies
# --------------------------------------------------------------------------------------


def sparse_assay(result: RaggedResult, field: str | None = None) -> AssayMatrix:
    """One column per distinct interval observed across all samples."""
    _check_field(result, field)
    intervals = sorted({r.key for records in result.values() for r in records})
    column_of = {iv: j for j, iv in enumerate(intervals)}
    samples = result.samples

    cells = np.full((len(samples), len(intervals)), None, dtype=object)
    filled = np.zeros(cells.shape, dtype=bool)
    for i, key in enumerate(samples):
        for record in result[key]:
            j = column_of[record.key]
            if not filled[i, j]:
                cells[i, j] = _value(record, field)
                filled[i, j] = True

    matrix = AssayMatrix(_finalize(cells), samples, intervals, "sparse", field)
    logger.debug(f"Built {matrix!r}")
    return matrix


def compact_assay(result: RaggedResult, field: str | None = None) -> AssayMatrix:
    """One column per disjoint piece of the overlay of all samples' intervals."""
    _check_field(result, field)
    intervals = disjoin([r.key for records in result.values() for r in records])
    samples = result.samples

    # disjoin emits each chromosome as one contiguous block of columns
    chrom_cols: dict[str, tuple[int, np.ndarray, np.ndarray]] = {}
    for chrom in dict.fromkeys(c for c, _, _ in intervals):
        cols = [j for j, iv in enumerate(intervals) if iv[0] == chrom]
        chrom_cols[chrom] = (
            cols[0],
            np.array([intervals[j][1] for j in cols], dtype=np.int64),
            np.array([intervals[j][2] for j in cols], dtype=np.int64),
        )

    cells = np.full((len(samples), len(intervals)), None, dtype=object)
    for i, key in enumerate(samples):
        per_chrom: dict[str, list[IntervalRecord]] = {}
        for record in result[key]:
            per_chrom.setdefault(record.chrom, []).append(record)
        for chrom, records in per_chrom.items():
            if chrom not in chrom_cols:
                continue
            offset, piece_starts, piece_ends = chrom_cols[chrom]
            rec_starts = np.fromiter((r.start for r in records), count=len(records), dtype=np.int64)
            rec_ends = np.fromiter((r.end for r in records), count=len(records), dtype=np.int64)
            owner = first_covering(piece_starts, piece_ends, rec_starts, rec_ends)
            for j in np.nonzero(owner >= 0)[0]:
                cells[i, offset + j] = _value(records[owner[j]], field)

    matrix = AssayMatrix(_finalize(cells), samples, intervals, "compact", field)
    logger.debug(f"Built {matrix!r}")
    return matrix


def _numeric(values: list[Any]) -> list[float]:
    return [float(v) for v in values if _is_number(v)]


def _reduce_numeric(fn: Callable[[list[float]], float]) -> Reducer:
    def reducer(values: list[Any]) -> Any:
        nums = _numeric(values)
        return fn(nums) if nums else None
    return reducer


REDUCERS: dict[str, Reducer] = {
    "max": _reduce_numeric(max),
    "min": _reduce_numeric(min),
    "sum": _reduce_numeric(sum),
    "mean": _reduce_numeric(lambda v: sum(v) / len(v)),
    "count": len,
    "first": lambda values: values[0],
    "concat": lambda values: ",".join(str(v) for v in values if v is not None),
}


def tile_region(region: GenomicRegion | str, *, n_bins: int | None = None, bin_size: int | None = None) -> list[GenomicRegion]:
    """Split ``region`` into consecutive half-open bins.

    Exactly one of ``n_bins`` (near-equal bins) or ``bin_size`` (fixed width,
    last bin truncated at the region end) must be given.
    """
    region = _as_region(region)
    if (n_bins is None) == (bin_size is None):
        raise ValueError("Specify exactly one of n_bins or bin_size")
    if n_bins is not None:
        if n_bins < 1 or n_bins > region.length:
            raise ValueError(f"n_bins must be in [1, {region.length}] for {region}")
        edges = np.linspace(region.start, region.end, n_bins + 1).round().astype(np.int64)
    else:
        if bin_size < 1:
            raise ValueError("bin_size must be positive")
        edges = np.append(np.arange(region.start, region.end, bin_size, dtype=np.int64), region.end)
    return [GenomicRegion(chrom=region.chrom, start=int(s), end=int(e)) for s, e in zip(edges[:-1], edges[1:])]


def reduced_assay(
    result: RaggedResult,
    sub_regions: Sequence[GenomicRegion | str | tuple],
    field: str | None = None,
    reducer: str | Reducer = "max",
) -> AssayMatrix:
    """One column per sub-region, reducing all overlapping records per sample.

    A record overlaps a sub-region under the same half-open predicate the
    store query uses. The reducer receives the overlapping records' values in
    record order; a (sample, sub-region) pair without overlapping records is
    absent. Named reducers: see :data:`REDUCERS`.
    """
    _check_field(result, field)
    if isinstance(reducer, str):
        try:
            reducer = REDUCERS[reducer]
        except KeyError:
            raise ValueError(f"Unknown reducer '{reducer}' (known: {', '.join(REDUCERS)})") from None
    try:
        subs = [_as_region(r) for r in sub_regions]
    except QueryError as e:
        raise ValueError(f"Invalid sub-region: {e}") from e
    intervals = [(r.chrom, r.start, r.end) for r in subs]
    if len(set(intervals)) != len(intervals):
        raise ValueError("Duplicate sub-regions")
    samples = result.samples

    sub_chroms = np.array([r.chrom for r in subs], dtype=object)
    sub_starts = np.array([r.start for r in subs], dtype=np.int64)
    sub_ends = np.array([r.end for r in subs], dtype=np.int64)

    cells = np.full((len(samples), len(subs)), None, dtype=object)
    for i, key in enumerate(samples):
        records = result[key]
        if not records or not subs:
            continue
        rec_chroms = np.array([r.chrom for r in records], dtype=object)
        rec_starts = np.fromiter((r.start for r in records), count=len(records), dtype=np.int64)
        rec_ends = np.fromiter((r.end for r in records), count=len(records), dtype=np.int64)
        hits = (
            (sub_chroms[:, None] == rec_chroms[None, :])
            & (rec_starts[None, :] < sub_ends[:, None])
            & (rec_ends[None, :] > sub_starts[:, None])
        )
        for j in range(len(subs)):
            idx = np.nonzero(hits[j])[0]
            if idx.size:
                cells[i, j] = reducer([_value(records[k], field) for k in idx])

    matrix = AssayMatrix(_finalize(cells), samples, intervals, "reduced", field)
    logger.debug(f"Built {matrix!r}")
    return matrix


POLICIES = {"sparse": sparse_assay, "compact": compact_assay, "reduced": reduced_assay}


def build_assay(result: RaggedResult, policy: str, field: str | None = None, **kwargs: Any) -> AssayMatrix:
    """Dispatch to the builder for ``policy``."""
    try:
        builder = POLICIES[policy]
    except KeyError:
        raise ValueError(f"Unknown policy '{policy}' (known: {', '.join(POLICIES)})") from None
    return builder(result, field=field, **kwargs)

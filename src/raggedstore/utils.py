"""Small runtime helpers shared by the importer and the CLI."""
from __future__ import annotations

import gzip
import re
from pathlib import Path
from typing import Iterator

from .core import GenomicRegion
from .errors import QueryError, SchemaError

_REGION_RE = re.compile(r"^\s*([^:\s]+):([\d,]+)-([\d,]+)\s*$")


def iter_lines(path: str | Path, encoding: str = "utf-8") -> Iterator[tuple[int, str]]:
    """Yield ``(line_number, text)`` from a possibly gzip-compressed file.

    Lines are decoded one at a time so an undecodable byte is reported with
    the line it sits on, as a :class:`SchemaError`.
    """
    path = Path(path)
    opener = gzip.open if path.suffix == ".gz" else open
    with opener(path, "rb") as handle:
        for line_number, raw in enumerate(handle, start=1):
            try:
                yield line_number, raw.decode(encoding).rstrip("\r\n")
            except UnicodeDecodeError as e:
                raise SchemaError(
                    f"Line is not valid {encoding}: {e.reason} at byte {e.start}",
                    path=str(path),
                    line_number=line_number,
                ) from e


def parse_region(text: str) -> GenomicRegion:
    """Parse ``chrom:start-end`` (thousands separators allowed)."""
    match = _REGION_RE.match(text)
    if match is None:
        raise QueryError(f"Cannot parse region '{text}'; expected chrom:start-end")
    chrom, start, end = match.groups()
    try:
        return GenomicRegion(chrom=chrom, start=int(start.replace(",", "")), end=int(end.replace(",", "")))
    except ValueError as e:
        raise QueryError(f"Invalid region '{text}': {e}") from e

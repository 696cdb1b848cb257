"""raggedstore.core

Shared value types, configuration models and logging setup used by every
other module in the package.
"""
from __future__ import annotations

import os
from typing import Any

import psutil
from loguru import logger
from pydantic import BaseModel, Field, field_validator, model_validator
from rich.console import Console

console = Console(stderr=True)

_LOG_FORMAT = "{time:HH:mm:ss} | {level: <8} | {message}"


def configure_logging(level: str | None = None) -> None:
    """Route loguru output through the shared rich console."""
    logger.remove()
    logger.add(
        sink=lambda msg: console.print(msg, markup=False, highlight=False, style="dim", end=""),
        format=_LOG_FORMAT,
        level=(level or os.environ.get("RAGGEDSTORE_LOG_LEVEL", "INFO")).upper(),
    )


configure_logging()


class GenomicRegion(BaseModel):
    """A validated genomic query region.

    Attributes:
        chrom: chromosome/contig name
        start: 0-based inclusive start position
        end: 0-based exclusive end position (must be > start)
    """
    model_config = {"validate_assignment": True, "extra": "forbid", "frozen": True}

    chrom: str = Field(..., min_length=1)
    start: int = Field(..., ge=0)
    end: int = Field(..., gt=0)

    @field_validator("end")
    @classmethod
    def validate_interval(cls, v: int, info) -> int:
        if "start" in info.data and v <= info.data["start"]:
            raise ValueError(f"End position ({v}) must be greater than start ({info.data['start']})")
        return v

    @property
    def length(self) -> int:
        """Return the length of this genomic region."""
        return self.end - self.start

    @property
    def label(self) -> str:
        """Compact ``chrom:start-end`` identity used for matrix column names."""
        return f"{self.chrom}:{self.start}-{self.end}"

    def overlaps(self, chrom: str, start: int, end: int) -> bool:
        """Half-open overlap test against another interval."""
        return chrom == self.chrom and start < self.end and end > self.start

    def __str__(self) -> str:
        return f"{self.chrom}:{self.start:,}-{self.end:,}"


class IntervalRecord(BaseModel):
    """One interval observation as stored in a sample collection.

    The three core fields are declared; dialect-specific fields (score,
    state, signal values...) ride along as pydantic extras so that every
    record of a collection carries exactly its dialect's field set.
    """
    model_config = {"extra": "allow", "frozen": True}

    chrom: str = Field(..., min_length=1)
    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _validate(self):  # type: ignore[override]
        if self.start > self.end:
            raise ValueError(f"start ({self.start}) must not exceed end ({self.end})")
        return self

    @property
    def key(self) -> tuple[str, int, int]:
        return (self.chrom, self.start, self.end)

    @property
    def fields(self) -> dict[str, Any]:
        """Dialect-specific fields, in dialect order."""
        return dict(self.model_extra or {})

    def get(self, name: str, default: Any = None) -> Any:
        if name in ("chrom", "start", "end"):
            return getattr(self, name)
        return (self.model_extra or {}).get(name, default)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "IntervalRecord":
        return cls(**{k: v for k, v in doc.items() if k != "_id"})

    def __str__(self) -> str:
        return f"{self.chrom}:{self.start}-{self.end}"


def _default_workers() -> int:
    # per-sample queries are round-trip bound, so oversubscribe physical cores
    return max(4, 2 * (psutil.cpu_count(logical=False) or 2))


class StoreConfig(BaseModel):
    """Connection and fan-out settings for the document store."""
    model_config = {"validate_assignment": True, "extra": "forbid"}

    uri: str = Field(default="mongodb://localhost:27017", min_length=1)
    database: str = Field(default="raggedstore", min_length=1)
    server_selection_timeout_ms: int = Field(default=5_000, gt=0)
    query_timeout_ms: int | None = Field(
        default=30_000, gt=0, description="Per-find server-side time limit (max_time_ms)"
    )
    socket_timeout_ms: int | None = Field(
        default=60_000, gt=0, description="Client socket timeout; bounds a stalled server"
    )
    max_workers: int = Field(default_factory=_default_workers, ge=1)

    def __str__(self) -> str:
        return f"Store({self.uri}/{self.database}, workers={self.max_workers})"


class ImportConfig(BaseModel):
    """Tuning knobs for interval file import."""
    model_config = {"validate_assignment": True, "extra": "forbid"}

    batch_size: int = Field(default=1_000, ge=1, description="Records per insert_many")
    create_index: bool = Field(default=True, description="Build (chrom, start, end) index")
    comment_prefixes: tuple[str, ...] = Field(default=("#", "track", "browser"))
    delimiter: str | None = Field(default="\t", description="None splits on whitespace")

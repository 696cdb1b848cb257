"""Interval file dialects and row normalization.

A dialect is pure data: the ordered column layout of one interval file
flavour plus its coordinate convention. Registering a new file format
means registering a new :class:`Dialect`; :func:`normalize` handles every
dialect with the same code path.
"""
from __future__ import annotations

from typing import Any, Literal, Mapping, Sequence

from pydantic import BaseModel, Field, ValidationError, model_validator

from .core import IntervalRecord
from .errors import SchemaError

CORE_FIELDS = ("chrom", "start", "end")
MISSING_TOKENS = frozenset({"", "."})
DEFAULT_DIALECT = "bed3"


class FieldSpec(BaseModel):
    """One column of a dialect."""
    model_config = {"frozen": True, "extra": "forbid"}

    name: str = Field(..., min_length=1)
    kind: Literal["str", "int", "float"] = "str"
    default: Any = None
    required: bool = False


class Dialect(BaseModel):
    """Ordered column layout and coordinate convention of a file flavour.

    Attributes:
        name: registry key (looked up case-insensitively)
        columns: fields in file column order; must include chrom/start/end
        zero_based: True for 0-based half-open files (BED family); False for
            1-based closed files (GFF), converted to 0-based half-open on
            normalization
    """
    model_config = {"frozen": True, "extra": "forbid"}

    name: str = Field(..., min_length=1)
    columns: tuple[FieldSpec, ...]
    zero_based: bool = True
    description: str = ""

    @model_validator(mode="after")
    def _validate(self):  # type: ignore[override]
        names = [c.name for c in self.columns]
        if len(set(names)) != len(names):
            raise ValueError(f"Dialect '{self.name}' has duplicate column names")
        by_name = {c.name: c for c in self.columns}
        for core, kind in zip(CORE_FIELDS, ("str", "int", "int")):
            if core not in by_name:
                raise ValueError(f"Dialect '{self.name}' lacks core field '{core}'")
            if by_name[core].kind != kind:
                raise ValueError(f"Core field '{core}' must be of kind '{kind}'")
        return self

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    @property
    def extra_fields(self) -> tuple[FieldSpec, ...]:
        """Dialect-specific fields, excluding chrom/start/end."""
        return tuple(c for c in self.columns if c.name not in CORE_FIELDS)

    @property
    def required_fields(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns if c.name in CORE_FIELDS or c.required)


def _core() -> tuple[FieldSpec, ...]:
    return (
        FieldSpec(name="chrom", kind="str", required=True),
        FieldSpec(name="start", kind="int", required=True),
        FieldSpec(name="end", kind="int", required=True),
    )


_BED6_EXTRA = (
    FieldSpec(name="name", kind="str", default=None),
    FieldSpec(name="score", kind="float", default=0.0),
    FieldSpec(name="strand", kind="str", default="."),
)

_PEAK_EXTRA = _BED6_EXTRA + (
    FieldSpec(name="signalValue", kind="float", default=-1.0),
    FieldSpec(name="pValue", kind="float", default=-1.0),
    FieldSpec(name="qValue", kind="float", default=-1.0),
)

_REGISTRY: dict[str, Dialect] = {}


def register_dialect(dialect: Dialect, *, replace: bool = False) -> Dialect:
    """Add a dialect to the registry and return it."""
    key = dialect.name.lower()
    if key in _REGISTRY and not replace:
        raise ValueError(f"Dialect '{dialect.name}' already registered")
    _REGISTRY[key] = dialect
    return dialect


def dialect_for(name: str | Dialect) -> Dialect:
    """Resolve a dialect by name (case-insensitive)."""
    if isinstance(name, Dialect):
        return name
    try:
        return _REGISTRY[name.lower()]
    except KeyError:
        known = ", ".join(sorted(d.name for d in _REGISTRY.values()))
        raise SchemaError(f"Unknown dialect '{name}' (known: {known})", dialect=name) from None


def available_dialects() -> list[Dialect]:
    return sorted(_REGISTRY.values(), key=lambda d: d.name.lower())


def _coerce(spec: FieldSpec, raw: Any, dialect: Dialect) -> Any:
    if spec.kind == "str":
        value = str(raw).strip()
        if spec.name == "chrom" and not value:
            raise SchemaError("Empty chromosome", field="chrom", dialect=dialect.name)
        return value
    if isinstance(raw, str):
        raw = raw.strip()
    try:
        if spec.kind == "int":
            if isinstance(raw, float) and not raw.is_integer():
                raise ValueError(raw)
            return int(raw)
        return float(raw)
    except (TypeError, ValueError):
        raise SchemaError(
            f"Field '{spec.name}' is not a valid {spec.kind}: {raw!r}",
            field=spec.name,
            dialect=dialect.name,
        ) from None


def _is_missing(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and raw.strip() in MISSING_TOKENS)


def normalize(raw_row: Sequence[Any] | Mapping[str, Any], dialect: str | Dialect = DEFAULT_DIALECT) -> IntervalRecord:
    """Turn one parsed row into an :class:`IntervalRecord`.

    ``raw_row`` is either the split columns of one file line (in dialect
    column order) or a mapping keyed by field name. Optional fields that are
    absent or hold a missing token (``.`` or empty) take their default.
    Coordinates of 1-based dialects are shifted to 0-based half-open.
    """
    dialect = dialect_for(dialect)

    if isinstance(raw_row, Mapping):
        raw = {spec.name: raw_row.get(spec.name) for spec in dialect.columns}
    else:
        if len(raw_row) > len(dialect.columns):
            raise SchemaError(
                f"Row has {len(raw_row)} columns; dialect '{dialect.name}' declares {len(dialect.columns)}",
                dialect=dialect.name,
            )
        raw = {spec.name: None for spec in dialect.columns}
        raw.update(zip(dialect.field_names, raw_row))

    values: dict[str, Any] = {}
    for spec in dialect.columns:
        cell = raw[spec.name]
        if _is_missing(cell):
            if spec.required or spec.name in CORE_FIELDS:
                raise SchemaError(
                    f"Missing required field '{spec.name}'", field=spec.name, dialect=dialect.name
                )
            values[spec.name] = spec.default
        else:
            values[spec.name] = _coerce(spec, cell, dialect)

    if not dialect.zero_based:
        values["start"] -= 1
    if values["start"] < 0:
        raise SchemaError(f"Negative start ({values['start']})", field="start", dialect=dialect.name)
    if values["start"] > values["end"]:
        raise SchemaError(
            f"start ({values['start']}) exceeds end ({values['end']})", field="end", dialect=dialect.name
        )
    try:
        return IntervalRecord(**values)
    except ValidationError as e:
        raise SchemaError(str(e), dialect=dialect.name) from e


# Built-in dialects -----------------------------------------------------------

register_dialect(Dialect(
    name="bed3",
    columns=_core(),
    description="Minimal chrom/start/end interval",
))
register_dialect(Dialect(
    name="bed6",
    columns=_core() + _BED6_EXTRA,
    description="BED with name, score and strand",
))
register_dialect(Dialect(
    name="bedGraph",
    columns=_core() + (FieldSpec(name="value", kind="float", required=True),),
    description="Signal value per interval",
))
register_dialect(Dialect(
    name="broadPeak",
    columns=_core() + _PEAK_EXTRA,
    description="ENCODE broadPeak (BED6+3)",
))
register_dialect(Dialect(
    name="narrowPeak",
    columns=_core() + _PEAK_EXTRA + (FieldSpec(name="peak", kind="int", default=-1),),
    description="ENCODE narrowPeak (BED6+4)",
))
register_dialect(Dialect(
    name="chromHMM",
    columns=_core() + (
        FieldSpec(name="state", kind="str", required=True),
        FieldSpec(name="score", kind="float", default=0.0),
        FieldSpec(name="strand", kind="str", default="."),
        FieldSpec(name="thickStart", kind="int", default=None),
        FieldSpec(name="thickEnd", kind="int", default=None),
        FieldSpec(name="itemRgb", kind="str", default=None),
    ),
    description="Categorical chromatin state segmentation",
))
register_dialect(Dialect(
    name="gff",
    columns=(
        FieldSpec(name="chrom", kind="str", required=True),
        FieldSpec(name="source", kind="str", default=None),
        FieldSpec(name="feature", kind="str", default=None),
        FieldSpec(name="start", kind="int", required=True),
        FieldSpec(name="end", kind="int", required=True),
        FieldSpec(name="score", kind="float", default=None),
        FieldSpec(name="strand", kind="str", default="."),
        FieldSpec(name="frame", kind="str", default="."),
        FieldSpec(name="attributes", kind="str", default=None),
    ),
    zero_based=False,
    description="GFF/GTF, 1-based closed coordinates",
))

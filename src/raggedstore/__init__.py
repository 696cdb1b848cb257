"""raggedstore: multi-sample genomic interval queries over a document store.

Interval files are imported one sample per collection; a
:class:`SampleContainer` binds sample metadata to the shared store
connection, :func:`overlaps_across_samples` fans a region query out to
every sample, and the builders in :mod:`raggedstore.assay` turn the ragged
result into fixed-shape matrices.
"""
from .assay import (
    AssayMatrix,
    REDUCERS,
    build_assay,
    compact_assay,
    reduced_assay,
    sparse_assay,
    tile_region,
)
from .container import SampleContainer
from .core import GenomicRegion, ImportConfig, IntervalRecord, StoreConfig, configure_logging
from .dialects import Dialect, FieldSpec, available_dialects, dialect_for, normalize, register_dialect
from .errors import (
    PartialQueryError,
    QueryError,
    RaggedStoreError,
    RecordImportError,
    SchemaError,
    StoreConnectionError,
    UnknownSampleError,
)
from .importer import ImportReport, import_file, import_manifest
from .query import count_region, query_region, region_filter
from .ragged import RaggedResult, overlaps_across_samples
from .utils import parse_region

__version__ = "0.1.0"

__all__ = [
    "AssayMatrix",
    "Dialect",
    "FieldSpec",
    "GenomicRegion",
    "ImportConfig",
    "ImportReport",
    "IntervalRecord",
    "PartialQueryError",
    "QueryError",
    "REDUCERS",
    "RaggedResult",
    "RaggedStoreError",
    "RecordImportError",
    "SampleContainer",
    "SchemaError",
    "StoreConfig",
    "StoreConnectionError",
    "UnknownSampleError",
    "available_dialects",
    "build_assay",
    "compact_assay",
    "configure_logging",
    "count_region",
    "dialect_for",
    "import_file",
    "import_manifest",
    "normalize",
    "overlaps_across_samples",
    "parse_region",
    "query_region",
    "reduced_assay",
    "region_filter",
    "register_dialect",
    "sparse_assay",
    "tile_region",
]

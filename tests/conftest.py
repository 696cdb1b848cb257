import uuid
from pathlib import Path

import mongomock
import pytest

from raggedstore import SampleContainer, StoreConfig


@pytest.fixture
def store_config() -> StoreConfig:
    # unique database per test so in-memory clients never share state
    return StoreConfig(database=f"test_{uuid.uuid4().hex[:8]}", max_workers=4)


@pytest.fixture
def container(store_config: StoreConfig):
    with SampleContainer(None, store_config, client_factory=mongomock.MongoClient) as c:
        yield c


@pytest.fixture
def write_intervals(tmp_path: Path):
    """Write tab-separated rows to a file under tmp_path and return its path."""

    def _write(name: str, rows: list[tuple], header: list[str] | None = None) -> Path:
        path = tmp_path / name
        lines = list(header or [])
        lines += ["\t".join(str(v) for v in row) for row in rows]
        path.write_text("\n".join(lines) + "\n")
        return path

    return _write


@pytest.fixture
def two_sample_container(container: SampleContainer, write_intervals):
    """s1: broadPeak (chr1:100-200, chr1:500-600); s2: chromHMM (chr1:150-250 A, chr1:700-800 B)."""
    s1 = write_intervals(
        "s1.broadPeak",
        [
            ("chr1", 100, 200, "p1", 500, ".", 4.5, 3.2, 2.1),
            ("chr1", 500, 600, "p2", 800, ".", 7.0, 5.0, 4.0),
        ],
    )
    s2 = write_intervals(
        "s2.bed",
        [
            ("chr1", 150, 250, "A"),
            ("chr1", 700, 800, "B"),
        ],
    )
    container.import_sample(s1, "s1", "broadPeak", tissue="liver")
    container.import_sample(s2, "s2", "chromHMM", tissue="lung")
    return container

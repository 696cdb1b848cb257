import pytest
from pymongo.errors import ExecutionTimeout

import raggedstore.ragged as ragged
from raggedstore import (
    GenomicRegion,
    PartialQueryError,
    QueryError,
    RaggedResult,
    StoreConfig,
    UnknownSampleError,
    overlaps_across_samples,
)


def test_concrete_two_sample_scenario(two_sample_container):
    result = overlaps_across_samples(two_sample_container, ["s1", "s2"], GenomicRegion(chrom="chr1", start=1, end=300))
    assert list(result) == ["s1", "s2"]
    assert [r.key for r in result["s1"]] == [("chr1", 100, 200)]
    assert [(r.key, r.get("state")) for r in result["s2"]] == [(("chr1", 150, 250), "A")]


def test_empty_sample_maps_to_empty_list(two_sample_container):
    result = two_sample_container.overlaps("chr1:650-900", ["s1", "s2"])
    assert result["s1"] == []
    assert [r.start for r in result["s2"]] == [700]
    assert result.lengths() == {"s1": 0, "s2": 1}
    assert result.total == 1


def test_order_follows_requested_keys(two_sample_container):
    result = overlaps_across_samples(two_sample_container, ["s2", "s1"], "chr1:1-1000", max_workers=1)
    assert result.samples == ["s2", "s1"]


def test_per_sample_limit(two_sample_container):
    result = overlaps_across_samples(two_sample_container, ["s1", "s2"], "chr1:1-1000", skip=0, limit=1)
    assert result.lengths() == {"s1": 1, "s2": 1}


def test_unknown_sample_fails_before_querying(two_sample_container):
    with pytest.raises(UnknownSampleError):
        overlaps_across_samples(two_sample_container, ["s1", "nope"], "chr1:1-300")


def test_no_samples_gives_empty_result(two_sample_container):
    result = overlaps_across_samples(two_sample_container, [], "chr1:1-300")
    assert len(result) == 0


def test_partial_failure_keeps_sibling_results(container, write_intervals, monkeypatch):
    for key in ("a", "b", "c"):
        path = write_intervals(f"{key}.bed", [("chr1", 10, 20)])
        container.import_sample(path, key, "bed3")

    real_query = ragged.query_region

    def flaky(store, collection_name, region, *args, **kwargs):
        if collection_name == "b":
            raise QueryError("Store query failed: operation exceeded time limit", collection="b", region=region)
        return real_query(store, collection_name, region, *args, **kwargs)

    monkeypatch.setattr(ragged, "query_region", flaky)
    with pytest.raises(PartialQueryError) as exc:
        overlaps_across_samples(container, ["a", "b", "c"], "chr1:0-100")

    err = exc.value
    assert err.sample_key == "b"
    assert list(err.failures) == ["b"]
    assert isinstance(err.failures["b"], QueryError)
    assert err.results.samples == ["a", "c"]
    assert [r.key for r in err.results["a"]] == [("chr1", 10, 20)]
    assert [r.key for r in err.results["c"]] == [("chr1", 10, 20)]


def test_ragged_result_tables():
    from raggedstore import IntervalRecord

    result = RaggedResult(
        GenomicRegion(chrom="chr1", start=0, end=100),
        {
            "x": [IntervalRecord(chrom="chr1", start=1, end=5, score=2.0)],
            "y": [],
            "z": [IntervalRecord(chrom="chr1", start=3, end=9, state="A")],
        },
    )
    assert result.table("y").columns == ["chrom", "start", "end"]
    assert result.table("y").height == 0
    long = result.to_polars()
    assert long.columns[0] == "sample"
    assert long["sample"].to_list() == ["x", "z"]
    assert set(long.columns) == {"sample", "chrom", "start", "end", "score", "state"}
    assert "x=1" in repr(result)


def test_default_query_timeout_reaches_every_sample(two_sample_container, monkeypatch):
    seen = {}
    real_query = ragged.query_region

    def recording(store, collection_name, region, *args, **kwargs):
        seen[collection_name] = kwargs["timeout_ms"]
        return real_query(store, collection_name, region, *args, **kwargs)

    monkeypatch.setattr(ragged, "query_region", recording)
    result = overlaps_across_samples(two_sample_container, ["s1", "s2"], "chr1:1-300")
    assert result.total == 2
    assert seen == {"s1": StoreConfig().query_timeout_ms, "s2": StoreConfig().query_timeout_ms}
    assert seen["s1"] is not None


def test_timed_out_sample_surfaces_as_partial_failure(two_sample_container, monkeypatch):
    real_query = ragged.query_region

    def slow_s2(store, collection_name, region, *args, **kwargs):
        if collection_name == "s2":
            return real_query(_TimeoutStore(ExecutionTimeout("operation exceeded time limit")), "s2", region)
        return real_query(store, collection_name, region, *args, **kwargs)

    monkeypatch.setattr(ragged, "query_region", slow_s2)
    with pytest.raises(PartialQueryError) as exc:
        overlaps_across_samples(two_sample_container, ["s1", "s2"], "chr1:1-300")
    assert list(exc.value.failures) == ["s2"]
    assert isinstance(exc.value.failures["s2"], QueryError)
    assert exc.value.results.samples == ["s1"]


class _TimeoutStore:
    def __init__(self, exc):
        self.exc = exc

    def __getitem__(self, name):
        return self

    def find(self, *args, **kwargs):
        raise self.exc

import mongomock
import polars as pl
import pytest
from pymongo.errors import ServerSelectionTimeoutError

from raggedstore import SampleContainer, StoreConfig, StoreConnectionError, UnknownSampleError

METADATA = pl.DataFrame(
    {
        "sample": ["e1", "e2", "e3", "e4"],
        "format": ["broadPeak", "chromHMM", "broadPeak", "chromHMM"],
        "tissue": ["liver", "liver", "lung", "brain"],
    }
)


@pytest.fixture
def meta_container(store_config):
    with SampleContainer(METADATA, store_config, client_factory=mongomock.MongoClient) as c:
        yield c


def test_samples_where_by_keyword_expression_and_callable(meta_container):
    assert meta_container.samples_where(format="broadPeak") == ["e1", "e3"]
    assert meta_container.samples_where(pl.col("tissue") != "liver") == ["e3", "e4"]
    assert meta_container.samples_where(lambda row: row["tissue"].startswith("l")) == ["e1", "e2", "e3"]
    assert meta_container.samples_where(pl.col("tissue") == "liver", format="chromHMM") == ["e2"]
    assert meta_container.samples_where() == ["e1", "e2", "e3", "e4"]
    with pytest.raises(KeyError):
        meta_container.samples_where(assay="x")


def test_collection_name_is_identity_by_default(meta_container):
    assert meta_container.collection_name_for("e2") == "e2"
    with pytest.raises(UnknownSampleError):
        meta_container.collection_name_for("zz")


def test_collection_column_overrides_name(store_config):
    meta = [{"sample": "a", "collection": "coll_a"}, {"sample": "b", "collection": None}]
    with SampleContainer(meta, store_config, client_factory=mongomock.MongoClient) as c:
        assert c.collection_name_for("a") == "coll_a"
        assert c.collection_name_for("b") == "b"


def test_metadata_subset_preserves_input_order(meta_container):
    subset = meta_container.metadata_subset(["e3", "e1"])
    assert subset["sample"].to_list() == ["e3", "e1"]
    assert subset["tissue"].to_list() == ["lung", "liver"]
    with pytest.raises(UnknownSampleError):
        meta_container.metadata_subset(["e1", "missing"])


def test_metadata_validation(store_config):
    with pytest.raises(ValueError, match="Duplicate"):
        SampleContainer({"sample": ["a", "a"]}, store_config, client_factory=mongomock.MongoClient)
    with pytest.raises(ValueError, match="key column"):
        SampleContainer({"name": ["a"]}, store_config, client_factory=mongomock.MongoClient)


class _UnreachableAdmin:
    def command(self, name):
        raise ServerSelectionTimeoutError("no servers found")


class _UnreachableClient:
    instances = []

    def __init__(self, uri, **kwargs):
        self.admin = _UnreachableAdmin()
        self.closed = False
        _UnreachableClient.instances.append(self)

    def close(self):
        self.closed = True


def test_unreachable_store_raises_connection_error(store_config):
    with pytest.raises(StoreConnectionError) as exc:
        SampleContainer(METADATA, store_config, client_factory=_UnreachableClient)
    assert exc.value.uri == store_config.uri
    assert isinstance(exc.value, ConnectionError)
    assert _UnreachableClient.instances[-1].closed


def test_client_is_created_once(store_config):
    created = []

    def factory(uri, **kwargs):
        created.append(kwargs)
        return mongomock.MongoClient(uri)

    with SampleContainer(METADATA, store_config, client_factory=factory) as c:
        c.collection_sizes()
        c.overlaps("chr1:1-10")
    assert len(created) == 1
    assert created[0]["serverSelectionTimeoutMS"] == store_config.server_selection_timeout_ms
    assert created[0]["socketTimeoutMS"] == store_config.socket_timeout_ms


def test_add_sample_inserts_and_updates(meta_container):
    meta_container.add_sample("e5", tissue="heart", format="bed3")
    assert meta_container.samples[-1] == "e5"
    meta_container.add_sample("e1", tissue="kidney")
    assert meta_container.metadata_subset(["e1"])["tissue"].to_list() == ["kidney"]
    assert len(meta_container) == 5
    assert "e5" in meta_container


def test_import_sample_registers_metadata(container, write_intervals):
    path = write_intervals("x.bed", [("chr1", 1, 5, "E2")])
    report = container.import_sample(path, "x", "chromHMM", tissue="liver")
    assert report.records_written == 1
    row = container.metadata_subset(["x"]).to_dicts()[0]
    assert row == {"sample": "x", "format": "chromHMM", "tissue": "liver"}
    assert container.collection_sizes() == {"x": 1}


def test_from_store_lists_collections(store_config, write_intervals):
    client = mongomock.MongoClient()
    db = client[store_config.database]
    db["b"].insert_one({"chrom": "chr1", "start": 0, "end": 1})
    db["a"].insert_one({"chrom": "chr1", "start": 0, "end": 1})
    c = SampleContainer.from_store(store_config, client_factory=lambda uri, **kw: client)
    assert c.samples == ["a", "b"]

import pytest
from loguru import logger
from pydantic import ValidationError

from raggedstore import GenomicRegion, IntervalRecord, QueryError, StoreConfig, configure_logging, parse_region


def test_genomic_region_length_and_label():
    r = GenomicRegion(chrom="chr1", start=1000, end=2000)
    assert r.length == 1000
    assert r.label == "chr1:1000-2000"
    assert str(r) == "chr1:1,000-2,000"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"chrom": "", "start": 0, "end": 10},
        {"chrom": "chr1", "start": -1, "end": 10},
        {"chrom": "chr1", "start": 10, "end": 10},
        {"chrom": "chr1", "start": 20, "end": 10},
    ],
)
def test_genomic_region_rejects_invalid(kwargs):
    with pytest.raises(ValidationError):
        GenomicRegion(**kwargs)


def test_genomic_region_overlap_is_half_open():
    r = GenomicRegion(chrom="chr1", start=5, end=6)
    assert not r.overlaps("chr1", 2, 5)
    assert r.overlaps("chr1", 5, 8)
    assert not r.overlaps("chr2", 5, 8)


def test_interval_record_extras_and_document():
    rec = IntervalRecord(chrom="chr1", start=10, end=20, state="A", score=1.5)
    assert rec.key == ("chr1", 10, 20)
    assert rec.get("state") == "A"
    assert rec.get("missing", "x") == "x"
    assert rec.fields == {"state": "A", "score": 1.5}
    doc = rec.to_document()
    assert doc == {"chrom": "chr1", "start": 10, "end": 20, "state": "A", "score": 1.5}
    assert IntervalRecord.from_document({**doc, "_id": "abc"}) == rec


def test_interval_record_allows_zero_length_but_not_inverted():
    assert IntervalRecord(chrom="chr1", start=5, end=5).start == 5
    with pytest.raises(ValidationError):
        IntervalRecord(chrom="chr1", start=6, end=5)


def test_store_config_validation():
    cfg = StoreConfig()
    assert cfg.max_workers >= 1
    assert cfg.query_timeout_ms == 30_000
    assert cfg.socket_timeout_ms == 60_000
    assert StoreConfig(query_timeout_ms=None).query_timeout_ms is None
    with pytest.raises(ValidationError):
        StoreConfig(max_workers=0)
    with pytest.raises(ValidationError):
        StoreConfig(unknown=1)


def test_parse_region():
    r = parse_region("chr1:1,000-2,000")
    assert (r.chrom, r.start, r.end) == ("chr1", 1000, 2000)
    with pytest.raises(QueryError):
        parse_region("chr1-100-200")
    with pytest.raises(QueryError):
        parse_region("chr1:300-100")


def test_log_lines_are_printed_without_markup_tags(capsys):
    configure_logging("INFO")
    try:
        logger.info("imported [3] records")
        err = capsys.readouterr().err
    finally:
        configure_logging()
    assert "imported [3] records" in err
    assert "[dim]" not in err
    assert "| INFO     |" in err

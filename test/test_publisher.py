import logging
from types import SimpleNamespace

import pytest

from viralwave.channel import Channel, Keyed
from viralwave.descriptor import TaskDescriptor
from viralwave.graph import Bind, build
from viralwave.publisher import publish


@pytest.fixture
def graph():
    reads = Channel.from_pairs([("S1", "a"), ("S2", "b")], name="reads")
    descs = [
        TaskDescriptor("sort", "noop", inputs=("x",), outputs=("bam", "bai"),
                       publish=[("bam", "alignments"), ("bai", "alignments")]),
        TaskDescriptor("haplo", "noop", inputs=("x",), outputs=("dir",), publish=[("dir", "haplotypes")]),
    ]
    bindings = {"sort": {"x": Bind.source(reads)}, "haplo": {"x": Bind.output("sort", "bam")}}
    return build(descs, bindings, SimpleNamespace(threads=2, mode="pe"))


def _emit(graph, task, port, records):
    ch = graph.channel(task, port)
    for rec in records:
        ch.emit(rec)
    ch.close()


def _artifacts(tmp_path):
    work = tmp_path / "work"
    work.mkdir()
    for name in ("S1.sorted.bam", "S1.sorted.bam.bai"):
        (work / name).write_text(name)
    hap = work / "S1.cliquesnv"
    hap.mkdir()
    (hap / "S1.txt").write_text("haplotypes")
    return work


def test_copy(graph, tmp_path):
    work = _artifacts(tmp_path)
    _emit(graph, "sort", "bam", [Keyed("S1", str(work / "S1.sorted.bam"))])
    _emit(graph, "sort", "bai", [Keyed("S1", str(work / "S1.sorted.bam.bai"))])
    _emit(graph, "haplo", "dir", [Keyed("S1", str(work / "S1.cliquesnv"))])
    out = tmp_path / "out"

    published = publish(graph, SimpleNamespace(outfolder=out, publish_mode="copy"))

    assert sorted(p.relative_to(out).as_posix() for p in published) == [
        "alignments/S1.sorted.bam", "alignments/S1.sorted.bam.bai", "haplotypes/S1.cliquesnv",
    ]
    assert not (out / "alignments" / "S1.sorted.bam").is_symlink()
    assert (out / "haplotypes" / "S1.cliquesnv" / "S1.txt").read_text() == "haplotypes"


def test_symlink_and_republish(graph, tmp_path):
    work = _artifacts(tmp_path)
    _emit(graph, "sort", "bam", [Keyed("S1", str(work / "S1.sorted.bam"))])
    _emit(graph, "sort", "bai", [])
    _emit(graph, "haplo", "dir", [Keyed("S1", str(work / "S1.cliquesnv"))])
    cfg = SimpleNamespace(outfolder=tmp_path / "out", publish_mode="symlink")

    publish(graph, cfg)
    published = publish(graph, cfg)

    bam = tmp_path / "out" / "alignments" / "S1.sorted.bam"
    assert bam.is_symlink()
    assert bam.resolve() == (work / "S1.sorted.bam").resolve()
    assert (tmp_path / "out" / "haplotypes" / "S1.cliquesnv").is_symlink()
    assert len(published) == 2


def test_tuple_records_and_missing_sources(graph, tmp_path, caplog):
    work = _artifacts(tmp_path)
    _emit(graph, "sort", "bam", [Keyed("S1", (str(work / "S1.sorted.bam"), str(work / "gone.bam")))])
    _emit(graph, "sort", "bai", [Keyed("S2", str(work / "S2.sorted.bam.bai"))])
    _emit(graph, "haplo", "dir", [])

    with caplog.at_level(logging.WARNING, logger="viralwave"):
        published = publish(graph, SimpleNamespace(outfolder=tmp_path / "out", publish_mode="copy"))

    assert [p.name for p in published] == ["S1.sorted.bam"]
    assert "gone.bam does not exist" in caplog.text
    assert "S2.sorted.bam.bai does not exist" in caplog.text


def test_open_channel_not_published(graph, tmp_path, caplog):
    work = _artifacts(tmp_path)
    graph.channel("sort", "bam").emit(Keyed("S1", str(work / "S1.sorted.bam")))

    with caplog.at_level(logging.WARNING, logger="viralwave"):
        published = publish(graph, SimpleNamespace(outfolder=tmp_path / "out", publish_mode="copy"))

    assert published == []
    assert "sort.bam: output channel not closed" in caplog.text
    assert not (tmp_path / "out" / "alignments").exists()

import logging
from types import SimpleNamespace

import pandas as pd
import pytest
import yaml

from viralwave.channel import Channel
from viralwave.descriptor import TaskDescriptor
from viralwave.errors import JoinMissError
from viralwave.graph import Bind, build
from viralwave.scheduler import JoinMiss, RunSummary, Scheduler
from viralwave.summary import (
    STATES, as_dict, counts_by_sample, counts_by_task, instances_frame, log_summary, write_summary,
)


def _summary(executor):
    reads = Channel.from_pairs([(k, f"{k}.fq") for k in ("S1", "S2", "S3")], name="reads")
    descs = [
        TaskDescriptor("trim", "noop", inputs=("x",), outputs=("y",)),
        TaskDescriptor("classify", "noop", inputs=("x",), outputs=("y",)),
        TaskDescriptor("align", "noop", inputs=("x",), outputs=("y",)),
        TaskDescriptor("report", "noop", inputs=("all",), outputs=("y",)),
    ]
    bindings = {
        "trim": {"x": Bind.source(reads)},
        "classify": {"x": Bind.output("trim", "y")},
        "align": {"x": Bind.output("classify", "y")},
        "report": {"all": Bind.output("align", "y", collect=True)},
    }
    graph = build(descs, bindings, SimpleNamespace(threads=2, mode="pe"))
    summary = Scheduler(graph, executor).run()
    summary.join_misses.append(JoinMiss("align", "S9", JoinMissError("align", "S9", ["ref"])))
    return summary


@pytest.fixture
def summary(fake_executor):
    return _summary(fake_executor(fail={"classify[S1]"}))


def test_instances_frame(summary):
    df = instances_frame(summary)
    assert list(df.columns) == ["task", "type", "sample", "state", "cause", "duration_sec", "workdir"]
    assert len(df) == 11
    report = df[df.task == "report"].iloc[0]
    assert report["sample"] == "_all"
    assert report["state"] == "succeeded"
    miss = df[df.state == "join_miss"].iloc[0]
    assert miss["sample"] == "S9"
    assert "no record for input(s) ref" in miss["cause"]
    failed = df[df.state == "failed"].iloc[0]
    assert (failed["task"], failed["sample"]) == ("classify", "S1")
    assert "exited with code 1" in failed["cause"]


def test_counts_by_task(summary):
    table = counts_by_task(summary)
    assert list(table.columns[: len(STATES)]) == STATES
    assert table.loc["trim", "succeeded"] == 3
    assert table.loc["classify", "failed"] == 1
    assert table.loc["align", "skipped"] == 1
    assert table.loc["align", "join_miss"] == 1
    assert table.loc["report", "cancelled"] == 0


def test_counts_by_sample(summary):
    table = counts_by_sample(summary)
    assert table.loc["S1"].to_dict()["skipped"] == 1
    assert table.loc["S2", "succeeded"] == 3
    assert table.loc["_all", "succeeded"] == 1


def test_as_dict(summary):
    data = as_dict(summary)
    assert data["variant"] == "pe"
    assert data["thread_budget"] == 2
    assert data["totals"] == {"succeeded": 8, "failed": 1, "skipped": 1, "join_miss": 1}
    assert data["per_task"]["classify"] == {"failed": 1, "succeeded": 2}
    assert data["failed"] == [{"instance": "classify[S1]", "cause": summary.failed[0].cause}]
    assert len(data["join_misses"]) == 1


def test_empty_run():
    empty = RunSummary("ont", 4, [], [], 0, False)
    assert instances_frame(empty).empty
    assert isinstance(counts_by_task(empty), pd.DataFrame)
    assert as_dict(empty)["totals"] == {}


def test_write_summary(summary, tmp_path):
    paths = write_summary(summary, tmp_path / "out")
    tsv = pd.read_csv(paths["tsv"], sep="\t")
    assert len(tsv) == 11
    data = yaml.safe_load(paths["yaml"].read_text())
    assert data["cancelled"] is False
    assert data["per_sample"]["S3"] == {"succeeded": 3}
    assert data["outfolder"] == str(tmp_path / "out")


def test_log_summary(summary, caplog):
    with caplog.at_level(logging.INFO, logger="viralwave"):
        log_summary(summary)
    assert "run summary (pe)" in caplog.text
    assert "[FAIL] classify[S1]" in caplog.text
    assert "join miss: align[S9]" in caplog.text

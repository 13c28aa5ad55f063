import json
import shutil
import threading
import time
from types import SimpleNamespace

import pytest

from viralwave.channel import Channel
from viralwave.descriptor import TaskDescriptor
from viralwave.errors import ExternalToolError
from viralwave.executor import SCRIPT_NAME, STDERR_NAME, BashExecutor
from viralwave.graph import Bind, build
from viralwave.scheduler import InstanceState, Scheduler, TaskInstance
from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import shell_line

pytestmark = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")


@register_task("testing.write")
class WriteTask(Task):
    """echo {text} > {prefix}.txt, optionally exiting with ``exit_code``."""
    INPUTS = {"text": {"type": "value", "required": True}}
    OUTPUTS = {"out": {"type": "path"}}
    DEFAULTS = {"exit_code": 0, "write": True, "sleep": 0}

    def resolve_outputs(self):
        return {"out": self.path(f"{self.prefix}.txt")}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir, sample_id=None):
        lines = []
        if params["sleep"]:
            lines.append(f"sleep {int(params['sleep'])}")
        if params["write"]:
            lines.append(shell_line(["echo", inputs["text"]], ">", outputs["out"]))
        if params["exit_code"]:
            lines.append(f"exit {int(params['exit_code'])}")
        return lines


@register_task("testing.upper")
class UpperTask(Task):
    INPUTS = {"src": {"type": "path", "required": True}}
    OUTPUTS = {"out": {"type": "path"}}

    def resolve_outputs(self):
        return {"out": self.path(f"{self.prefix}.upper.txt")}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir, sample_id=None):
        return [shell_line(["tr", "a-z", "A-Z"], "<", inputs["src"], ">", outputs["out"])]


@register_task("testing.bundle")
class BundleTask(Task):
    INPUTS = {"name": {"type": "value", "required": True}}
    OUTPUTS = {"dir": {"type": "dir"}}
    DEFAULTS = {"fill": True}

    def resolve_outputs(self):
        return {"dir": self.path("bundle")}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir, sample_id=None):
        lines = [shell_line(["mkdir", "-p", outputs["dir"]])]
        if params["fill"]:
            lines.append(shell_line(["echo", inputs["name"]], ">", f"{outputs['dir']}/index.txt"))
        return lines


def _instance(tmp_path, key="S1", text="hello", **params):
    desc = TaskDescriptor.from_task("write", "testing.write", params=params)
    return TaskInstance(desc, key, {"text": text}, threads=1, workdir=tmp_path / "w" / (key or "_all"))


def test_success_writes_outputs_and_done_flag(tmp_path):
    inst = _instance(tmp_path)
    outputs = BashExecutor().execute(inst)
    out = inst.workdir / "S1.txt"
    assert outputs == {"out": str(out)}
    assert out.read_text() == "hello\n"
    assert (inst.workdir / ".done").exists()
    assert not (inst.workdir / ".failed").exists()
    meta = json.loads((inst.workdir / ".done.json").read_text())
    assert meta["status"] == "OK"
    script = (inst.workdir / SCRIPT_NAME).read_text()
    assert script.startswith("#!/usr/bin/env bash\nset -euo pipefail")
    assert f"cd {inst.workdir}" in script


def test_done_instance_is_not_run_again(tmp_path):
    inst = _instance(tmp_path)
    ex = BashExecutor()
    ex.execute(inst)
    script = inst.workdir / SCRIPT_NAME
    script.unlink()
    ex.execute(_instance(tmp_path))
    assert not script.exists()


def test_truncated_output_triggers_rerun(tmp_path):
    inst = _instance(tmp_path)
    ex = BashExecutor()
    ex.execute(inst)
    (inst.workdir / "S1.txt").write_text("")
    ex.execute(_instance(tmp_path, text="again"))
    assert (inst.workdir / "S1.txt").read_text() == "again\n"


def test_nonzero_exit(tmp_path):
    inst = _instance(tmp_path, exit_code=3)
    with pytest.raises(ExternalToolError) as e:
        BashExecutor().execute(inst)
    assert e.value.returncode == 3
    assert (inst.workdir / ".failed").exists()
    assert not (inst.workdir / ".done").exists()


def test_failed_command_stops_the_script(tmp_path):
    desc = TaskDescriptor.from_task("upper", "testing.upper")
    inst = TaskInstance(desc, "S1", {"src": str(tmp_path / "missing.txt")}, threads=1, workdir=tmp_path / "u")
    with pytest.raises(ExternalToolError):
        BashExecutor().execute(inst)
    assert "missing.txt" in (inst.workdir / STDERR_NAME).read_text()


def test_missing_output(tmp_path):
    inst = _instance(tmp_path, write=False)
    with pytest.raises(ExternalToolError) as e:
        BashExecutor().execute(inst)
    assert e.value.returncode is None
    assert e.value.missing == [inst.workdir / "S1.txt"]
    assert (inst.workdir / ".failed").exists()


@pytest.mark.parametrize("fill", [True, False])
def test_directory_output_must_not_be_empty(tmp_path, fill):
    desc = TaskDescriptor.from_task("bundle", "testing.bundle", params={"fill": fill})
    inst = TaskInstance(desc, "S1", {"name": "S1"}, threads=1, workdir=tmp_path / "w")
    if fill:
        assert BashExecutor().execute(inst) == {"dir": str(inst.workdir / "bundle")}
        assert (inst.workdir / ".done").exists()
        return
    with pytest.raises(ExternalToolError) as e:
        BashExecutor().execute(inst)
    assert e.value.returncode is None
    assert e.value.missing == [inst.workdir / "bundle"]
    assert (inst.workdir / ".failed").exists()


def test_cliquesnv_that_writes_nothing_fails(tmp_path):
    desc = TaskDescriptor.from_task("haplo", "cliquesnv", params={"java_bin": "true", "samtools_bin": "true"})
    inst = TaskInstance(desc, "S1", {"bam": str(tmp_path / "S1.bam")}, threads=1, workdir=tmp_path / "w")
    with pytest.raises(ExternalToolError, match="missing or empty"):
        BashExecutor().execute(inst)
    assert (inst.workdir / "S1.cliquesnv").is_dir()
    assert not (inst.workdir / ".done").exists()


def test_tool_params_under_descriptor_params(tmp_path):
    ex = BashExecutor(tools={"testing.write": {"exit_code": 5, "sleep": 0}})
    task = ex.make_task(_instance(tmp_path, exit_code=0))
    assert task.params["exit_code"] == 0
    assert task.threads == 1 and task.sample_id == "S1"


def test_terminate_all_stops_running_script(tmp_path):
    inst = _instance(tmp_path, sleep=30)
    ex = BashExecutor()
    errors = []

    def target():
        try:
            ex.execute(inst)
        except ExternalToolError as e:
            errors.append(e)

    t = threading.Thread(target=target)
    t.start()
    deadline = time.time() + 10
    while not ex._procs and time.time() < deadline:
        time.sleep(0.05)
    ex.terminate_all()
    t.join(timeout=10)
    assert not t.is_alive()
    assert errors and errors[0].returncode != 0
    with pytest.raises(ExternalToolError, match="terminated"):
        ex.execute(_instance(tmp_path, key="S2"))


def test_trace_records_every_call(tmp_path):
    ex = BashExecutor()
    ex.execute(_instance(tmp_path))
    with pytest.raises(ExternalToolError):
        ex.execute(_instance(tmp_path, key="S2", exit_code=1))
    ex.save_trace(tmp_path / "trace.jsonl")
    records = [json.loads(ln) for ln in (tmp_path / "trace.jsonl").read_text().splitlines()]
    assert len(records) == 2
    assert records[0]["error"] is None
    assert "exited with code 1" in records[1]["error"]


def test_scheduler_runs_bash_chain(tmp_path):
    texts = Channel.from_pairs([("S1", "abc"), ("S2", "xyz")], name="texts")
    descs = [
        TaskDescriptor.from_task("write", "testing.write"),
        TaskDescriptor.from_task("upper", "testing.upper"),
    ]
    bindings = {
        "write": {"text": Bind.source(texts)},
        "upper": {"src": Bind.output("write", "out")},
    }
    graph = build(descs, bindings, SimpleNamespace(threads=2, mode="pe"))
    summary = Scheduler(graph, BashExecutor(), workdir=tmp_path / "work").run()
    assert summary.ok
    assert summary.state_of("upper", "S2") is InstanceState.SUCCEEDED
    outs = sorted(graph.channel("upper", "out").drain(), key=lambda r: r.key)
    assert [open(r.value).read() for r in outs] == ["ABC\n", "XYZ\n"]

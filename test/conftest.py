# test/conftest.py
import gzip
import logging
import threading
import time

import pytest

from viralwave.config import validate
from viralwave.errors import ExternalToolError
from viralwave.executor import Executor


class FakeExecutor(Executor):
    """
    In-process stand-in for BashExecutor. Instances listed in ``fail``
    (by label like ``kraken2[S1]`` or by task name) raise ExternalToolError;
    every other instance returns ``<task>/<key>/<port>`` strings.
    With ``block=True`` every call waits until ``terminate_all``.
    """

    def __init__(self, fail=(), delay=0.0, block=False, **kwargs):
        self.fail = set(fail)
        self.delay = delay
        self.lock = threading.Lock()
        self.events = []
        self.calls = []
        self.inputs = {}
        self.running_threads = 0
        self.peak_threads = 0
        self.started = threading.Event()
        self.terminated = False
        self._release = threading.Event()
        if not block:
            self._release.set()

    def execute(self, instance):
        with self.lock:
            self.calls.append(instance.label)
            self.inputs[instance.label] = dict(instance.inputs)
            self.events.append(("start", instance.label))
            self.running_threads += instance.threads
            self.peak_threads = max(self.peak_threads, self.running_threads)
        self.started.set()
        try:
            if self.delay:
                time.sleep(self.delay)
            self._release.wait(timeout=10)
            if instance.label in self.fail or instance.task in self.fail:
                raise ExternalToolError(instance.label, returncode=1)
            key = instance.key if instance.key is not None else "_all"
            return {p: f"{instance.task}/{key}/{p}" for p in instance.descriptor.output_names}
        finally:
            with self.lock:
                self.running_threads -= instance.threads
                self.events.append(("end", instance.label))

    def terminate_all(self):
        self.terminated = True
        self._release.set()

    def save_trace(self, path):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("")


@pytest.fixture
def fake_executor():
    return FakeExecutor


@pytest.fixture
def make_fastqs(tmp_path):
    """Create small gzipped FASTQ files; returns the reads folder."""
    def _make(names, folder="reads"):
        d = tmp_path / folder
        d.mkdir(exist_ok=True)
        for name in names:
            with gzip.open(d / name, "wt") as fh:
                fh.write("@r1\nACGT\n+\nIIII\n")
        return d
    return _make


@pytest.fixture
def make_config(tmp_path):
    def _make(reads, **flags):
        raw = {"pe": True, "readsfolder": str(reads), "outfolder": str(tmp_path / "out")}
        raw.update(flags)
        return validate(raw)
    return _make


@pytest.fixture(autouse=True)
def reset_viralwave_logger():
    yield
    root = logging.getLogger("viralwave")
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.propagate = True
    root.setLevel(logging.NOTSET)

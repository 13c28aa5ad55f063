# viralwave/executor.py
from __future__ import annotations
import logging
import os
import signal
import subprocess
import threading
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from viralwave.errors import ExternalToolError
from viralwave.tasks.loader import load_task_class
from viralwave.tasks.task import Task
from viralwave.utils.flags import CACHED, FAILED_FLAG, flag_on_complete, missing_outputs, skip_if_done
from viralwave.utils.log import Logger
from viralwave.utils.sh_writer import write_task_script

log = logging.getLogger("viralwave.executor")

SCRIPT_NAME = ".command.sh"
STDOUT_NAME = ".command.out"
STDERR_NAME = ".command.err"


class Executor:
    """
    What the scheduler calls from its worker threads. ``execute`` returns the
    instance's outputs (port -> value) or raises; ``terminate_all`` may be
    called from any thread.
    """

    def execute(self, instance) -> Dict[str, Any]:
        raise NotImplementedError

    def terminate_all(self) -> None:
        pass


class BashExecutor(Executor):
    """
    Run each instance as ``bash .command.sh`` inside its work directory.

    The script is rendered from the instance's Task template. stdout/stderr go
    to ``.command.out`` / ``.command.err``. A non-zero exit code or a missing
    declared output raises ExternalToolError. ``.done`` / ``.failed`` flags are
    written after every call; an instance whose ``.done`` flag and outputs are
    still in place is not run again (resume).
    """

    def __init__(self, tools: Optional[Mapping[str, Mapping[str, Any]]] = None, *, set_x: bool = False):
        self.tools = {k: dict(v or {}) for k, v in (tools or {}).items()}
        self.set_x = set_x
        self._procs: Dict[int, subprocess.Popen] = {}
        self._lock = threading.Lock()
        self._terminated = False
        self.trace = Logger(self._execute, task_id="instance", log=logging.getLogger("viralwave.trace"))

    # ---- template ----
    def make_task(self, instance) -> Task:
        desc = instance.descriptor
        cls = load_task_class(desc.task_type)
        params = {**self.tools.get(desc.task_type, {}), **desc.params}
        return cls(
            desc.name,
            instance.workdir,
            inputs=instance.inputs,
            params=params,
            threads=instance.threads,
            sample_id=instance.key,
        )

    def execute(self, instance) -> Dict[str, Any]:
        if instance.workdir is None:
            raise ValueError(f"{instance.label}: no work directory assigned")
        return self.trace(instance)

    def _execute(self, instance) -> Dict[str, Any]:
        task = self.make_task(instance)
        result = self.run_task(task)
        if result == CACHED:
            log.info("[CACHED] %s (%s)", instance.label, task.workdir)
        return dict(task.outputs)

    @skip_if_done()
    @flag_on_complete()
    def run_task(self, task: Task) -> int:
        workdir = Path(task.workdir)
        workdir.mkdir(parents=True, exist_ok=True)
        (workdir / FAILED_FLAG).unlink(missing_ok=True)

        script = write_task_script(task, workdir / SCRIPT_NAME, set_x=self.set_x)
        ret = self._run_script(script, workdir)
        if ret != 0:
            raise ExternalToolError(task.name, returncode=ret)

        missing = missing_outputs(task.outputs)
        if missing:
            raise ExternalToolError(task.name, missing=missing)
        return ret

    def _run_script(self, script: Path, workdir: Path) -> int:
        with self._lock:
            if self._terminated:
                raise ExternalToolError(str(workdir), detail="executor terminated before start")
        with open(workdir / STDOUT_NAME, "w") as out, open(workdir / STDERR_NAME, "w") as err:
            proc = subprocess.Popen(
                ["bash", str(script)], stdout=out, stderr=err, cwd=str(workdir), start_new_session=True
            )
            with self._lock:
                self._procs[proc.pid] = proc
            try:
                return proc.wait()
            finally:
                with self._lock:
                    self._procs.pop(proc.pid, None)

    def terminate_all(self) -> None:
        """SIGTERM every running script's process group. Thread-safe."""
        with self._lock:
            self._terminated = True
            procs = list(self._procs.values())
        for proc in procs:
            try:
                os.killpg(proc.pid, signal.SIGTERM)
            except ProcessLookupError:
                continue
            log.warning("sent SIGTERM to pid %d", proc.pid)

    def save_trace(self, path) -> None:
        self.trace.save_logs_to_file(path, mode="w")

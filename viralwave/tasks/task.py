from __future__ import annotations
import abc
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from viralwave.tasks.utils import render_lines


# ---- Base Task ----
class Task(abc.ABC):
    """
    Command template for one external tool.

    Subclasses declare:
      TYPE     : registry key, e.g. "fastp" or "samtools.sort"
      INPUTS   : {port: {"type", "required", "desc"}}
      OUTPUTS  : {port: {"type", "desc"}}
      DEFAULTS : tool params, overridden by the run's TOOLS config

    and implement ``resolve_outputs`` (output paths from inputs + workdir)
    and ``_build_cmd`` (shell lines). One Task object is created per
    TaskInstance, inside the instance's work directory.
    """

    TYPE: str = ""
    INPUTS: Dict[str, Any] = {}
    OUTPUTS: Dict[str, Any] = {}
    DEFAULTS: Dict[str, Any] = {}

    def __init__(
        self,
        name: str,
        workdir: str | Path,
        inputs: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        threads: int = 1,
        sample_id: Optional[str] = None,
    ):
        self.name = name
        self.workdir = Path(workdir)
        self.inputs = dict(inputs or {})
        self.params = {**(self.DEFAULTS or {}), **(params or {})}
        self.threads = int(threads)
        self.sample_id = sample_id

        self._check_inputs()
        self.outputs = self.resolve_outputs()

    def _check_inputs(self) -> None:
        for port, schema in (self.INPUTS or {}).items():
            if schema.get("required") and self.inputs.get(port) in (None, "", [], ()):
                raise ValueError(f"[{self.TYPE}] INPUT.{port} is required")

    @property
    def prefix(self) -> str:
        """File name stem for outputs: the sample key, or the task name for run-wide tasks."""
        return self.sample_id or self.name

    def path(self, filename: str) -> str:
        return str(self.workdir / filename)

    # ---- Contract ----
    @abc.abstractmethod
    def resolve_outputs(self) -> Dict[str, Any]:
        """Declared output paths, keyed by OUTPUTS port."""

    @abc.abstractmethod
    def _build_cmd(
        self,
        *,
        inputs: Dict[str, Any],
        outputs: Dict[str, Any],
        params: Dict[str, Any],
        threads: int,
        workdir: str,
        sample_id: Optional[str] = None,
    ) -> List[Sequence[str] | str]:
        """Shell lines (strings or argv lists) that produce ``outputs``."""

    def to_sh(self) -> List[str]:
        lines = self._build_cmd(
            inputs=self.inputs,
            outputs=dict(self.outputs),
            params=self.params,
            threads=self.threads,
            workdir=str(self.workdir),
            sample_id=self.sample_id,
        )
        return render_lines(lines)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, sample_id={self.sample_id!r})"

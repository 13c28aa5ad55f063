from __future__ import annotations
from typing import Any, Optional


class ViralWaveError(Exception):
    """Base class for every error raised by viralwave."""


# --------------------------
# before any work starts
# --------------------------
class ConfigError(ViralWaveError):
    """Bad or missing run flags. Fatal, raised before graph construction."""


class SampleKeyError(ConfigError):
    """A reads file name does not follow the ``<key>_...`` convention."""


# --------------------------
# graph wiring defects
# --------------------------
class GraphError(ViralWaveError):
    """Invalid task wiring (unknown task/port, duplicate descriptor ...)."""


class CycleError(GraphError):
    def __init__(self, nodes):
        self.nodes = sorted(nodes)
        super().__init__(f"cycle detected between tasks: {', '.join(self.nodes)}")


class UnboundInputError(GraphError):
    def __init__(self, task: str, port: str):
        self.task = task
        self.port = port
        super().__init__(f"input '{task}.{port}' is not bound to a source or task output")


class TaskLoadError(ViralWaveError):
    """A command template module could not be imported."""


# --------------------------
# per instance, run time
# --------------------------
class ExternalToolError(ViralWaveError):
    """A collaborator process exited non-zero or left a declared output missing."""

    def __init__(self, label: str, *, returncode: Optional[int] = None,
                 missing: Optional[list] = None, detail: str = ""):
        self.label = label
        self.returncode = returncode
        self.missing = list(missing or [])
        if returncode is not None and returncode != 0:
            msg = f"{label}: command exited with code {returncode}"
        elif self.missing:
            msg = f"{label}: declared outputs missing or empty: {', '.join(map(str, self.missing))}"
        else:
            msg = f"{label}: {detail or 'failed'}"
        super().__init__(msg)


class JoinMissError(ViralWaveError):
    """Never raised. Attached to a dropped join so the summary can tell it from a failure."""

    def __init__(self, task: str, key: Any, missing_ports):
        self.task = task
        self.key = key
        self.missing_ports = tuple(missing_ports)
        super().__init__(
            f"{task}[{key}]: no record for input(s) {', '.join(self.missing_ports)}"
        )


class ChannelClosedError(ViralWaveError):
    """A record was emitted on a channel after end-of-stream."""

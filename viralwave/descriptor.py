# viralwave/descriptor.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from viralwave.utils.flags import outputs_ok


class PortKind(str, Enum):
    VALUE = "value"
    FILE = "file"
    TUPLE = "tuple"

    @classmethod
    def from_schema(cls, schema: Mapping[str, Any]) -> "PortKind":
        # Task schemas say "path"/"dir" for files
        kind = str(schema.get("type", "path")).lower()
        if kind in ("path", "dir", "file"):
            return cls.FILE
        return cls(kind)


@dataclass(frozen=True)
class Port:
    name: str
    kind: PortKind = PortKind.FILE


def _ports(items) -> Tuple[Port, ...]:
    out = []
    for p in items:
        out.append(p if isinstance(p, Port) else Port(str(p)))
    return tuple(out)


@dataclass(frozen=True)
class TaskDescriptor:
    """
    Immutable description of one unit of work.

    ``task_type`` is the registry TYPE of the command template that renders
    the shell lines. ``publish`` maps output ports to sub-folders of the run's
    output folder. ``skip_when`` and ``complete`` are optional predicates over
    the bound inputs and the produced outputs; they do not take part in
    equality.
    """

    name: str
    task_type: str
    inputs: Tuple[Port, ...] = ()
    outputs: Tuple[Port, ...] = ()
    threads: int = 1
    params: Dict[str, Any] = field(default_factory=dict, hash=False)
    publish: Tuple[Tuple[str, str], ...] = ()
    skip_when: Optional[Callable[[Dict[str, Any]], bool]] = field(default=None, compare=False)
    complete: Optional[Callable[[Dict[str, Any]], bool]] = field(default=None, compare=False)

    def __post_init__(self):
        if not self.name:
            raise ValueError("task descriptor needs a name")
        if int(self.threads) < 1:
            raise ValueError(f"{self.name}: threads must be >= 1, got {self.threads}")
        object.__setattr__(self, "inputs", _ports(self.inputs))
        object.__setattr__(self, "outputs", _ports(self.outputs))
        object.__setattr__(self, "publish", tuple(tuple(r) for r in self.publish))
        object.__setattr__(self, "params", dict(self.params))

    @classmethod
    def from_task(cls, name: str, task_type: str, **kwargs) -> "TaskDescriptor":
        """Descriptor whose ports are read from the registered Task class."""
        from viralwave.tasks.loader import load_task_class

        task_cls = load_task_class(task_type)
        inputs = tuple(Port(p, PortKind.from_schema(s)) for p, s in task_cls.INPUTS.items())
        outputs = tuple(Port(p, PortKind.from_schema(s)) for p, s in task_cls.OUTPUTS.items())
        return cls(name=name, task_type=task_type, inputs=inputs, outputs=outputs, **kwargs)

    @property
    def input_names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.inputs)

    @property
    def output_names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.outputs)

    def should_skip(self, inputs: Dict[str, Any]) -> bool:
        return bool(self.skip_when and self.skip_when(inputs))

    def is_complete(self, outputs: Dict[str, Any]) -> bool:
        """Default: every declared output exists and is non-empty."""
        if self.complete is not None:
            return bool(self.complete(outputs))
        return outputs_ok(outputs)

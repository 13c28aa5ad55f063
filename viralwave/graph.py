# viralwave/graph.py
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from viralwave.channel import Channel, Stream
from viralwave.descriptor import TaskDescriptor
from viralwave.errors import CycleError, GraphError, UnboundInputError

log = logging.getLogger("viralwave.graph")


@dataclass(frozen=True)
class Bind:
    """Where one input port reads from: an external stream or a task output."""

    stream: Optional[Stream] = None
    task: Optional[str] = None
    port: Optional[str] = None
    collect: bool = False

    @classmethod
    def source(cls, stream: Stream, collect: bool = False) -> "Bind":
        return cls(stream=stream, collect=collect)

    @classmethod
    def output(cls, task: str, port: str, collect: bool = False) -> "Bind":
        return cls(task=task, port=port, collect=collect)

    @property
    def is_source(self) -> bool:
        return self.stream is not None


@dataclass(frozen=True)
class Edge:
    producer: str
    out_port: str
    consumer: str
    in_port: str
    collect: bool = False


@dataclass
class Node:
    descriptor: TaskDescriptor
    threads: int
    keyed: bool
    inputs: Dict[str, Bind]
    outputs: Dict[str, Channel] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.descriptor.name

    def upstream_tasks(self) -> List[str]:
        return sorted({b.task for b in self.inputs.values() if not b.is_source})


class Graph:
    """
    Validated task DAG. ``nodes`` is in topological order, ``variant`` is the
    pipeline template it was built from. Every (task, output port) owns one
    channel, written only by the scheduler.
    """

    def __init__(self, nodes: Dict[str, Node], edges: Tuple[Edge, ...], variant: str, budget: int):
        self.nodes = nodes
        self.edges = edges
        self.variant = variant
        self.budget = budget

    @property
    def order(self) -> Tuple[str, ...]:
        return tuple(self.nodes)

    def node(self, name: str) -> Node:
        try:
            return self.nodes[name]
        except KeyError:
            raise GraphError(f"unknown task '{name}'") from None

    def channel(self, task: str, port: str) -> Channel:
        node = self.node(task)
        if port not in node.outputs:
            raise GraphError(f"task '{task}' has no output '{port}'")
        return node.outputs[port]

    def consumers(self, task: str) -> List[Edge]:
        return [e for e in self.edges if e.producer == task]

    def sources(self) -> List[Tuple[str, str, Bind]]:
        """(task, port, bind) for every input fed by an external stream."""
        return [(n.name, port, b) for n in self.nodes.values() for port, b in n.inputs.items() if b.is_source]

    def structure(self) -> Tuple[Any, ...]:
        """Comparable shape: descriptors, threads, keyed flags, edges, order."""
        nodes = tuple((n.descriptor, n.threads, n.keyed) for n in self.nodes.values())
        return (self.variant, nodes, self.edges, self.order)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Graph):
            return NotImplemented
        return self.structure() == other.structure()

    __hash__ = None

    def describe(self) -> Dict[str, Any]:
        """Plain-data plan of the graph, for ``--plan``."""
        tasks = []
        for n in self.nodes.values():
            ins = {}
            for port, b in n.inputs.items():
                src = f"source:{b.stream.name or 'stream'}" if b.is_source else f"{b.task}.{b.port}"
                ins[port] = f"{src} (collect)" if b.collect else src
            entry = {
                "name": n.name,
                "type": n.descriptor.task_type,
                "threads": n.threads,
                "keyed": n.keyed,
                "inputs": ins,
                "outputs": list(n.outputs),
            }
            if n.descriptor.publish:
                entry["publish"] = {port: sub for port, sub in n.descriptor.publish}
            tasks.append(entry)
        return {
            "variant": self.variant,
            "thread_budget": self.budget,
            "tasks": tasks,
            "edges": [f"{e.producer}.{e.out_port} -> {e.consumer}.{e.in_port}"
                      + (" (collect)" if e.collect else "") for e in self.edges],
        }

    def __repr__(self) -> str:
        return f"<Graph {self.variant} tasks={len(self.nodes)} edges={len(self.edges)}>"


# --------------------------
# build
# --------------------------
def _variant_of(config) -> str:
    mode = getattr(config, "mode", "")
    return str(getattr(mode, "value", mode))


def _topological_order(names: List[str], deps: Mapping[str, Iterable[str]]) -> List[str]:
    """Kahn's algorithm; ties resolved by declaration order."""
    rank = {n: i for i, n in enumerate(names)}
    indeg = {n: 0 for n in names}
    children: Dict[str, List[str]] = {n: [] for n in names}
    for n in names:
        for d in set(deps[n]):
            indeg[n] += 1
            children[d].append(n)

    ready = sorted((n for n in names if indeg[n] == 0), key=rank.get)
    order: List[str] = []
    while ready:
        n = ready.pop(0)
        order.append(n)
        for c in children[n]:
            indeg[c] -= 1
            if indeg[c] == 0:
                ready.append(c)
        ready.sort(key=rank.get)

    if len(order) != len(names):
        raise CycleError([n for n in names if indeg[n] > 0])
    return order


def build(descriptors: Iterable[TaskDescriptor],
          bindings: Mapping[str, Mapping[str, Bind]],
          config) -> Graph:
    """
    Wire descriptors into a Graph.

    ``bindings`` maps ``task -> {input port -> Bind}``. Raises GraphError
    for duplicate names or references to unknown tasks/ports,
    UnboundInputError for an input with no binding, CycleError when the
    wiring is not a DAG. Thread requests are clamped to ``config.threads``.
    """
    descs: Dict[str, TaskDescriptor] = {}
    for d in descriptors:
        if d.name in descs:
            raise GraphError(f"duplicate task name '{d.name}'")
        descs[d.name] = d

    for task, ports in bindings.items():
        if task not in descs:
            raise GraphError(f"binding for unknown task '{task}'")
        for port, b in ports.items():
            if port not in descs[task].input_names:
                raise GraphError(f"task '{task}' has no input '{port}'")
            if b.is_source:
                continue
            if b.task not in descs:
                raise GraphError(f"'{task}.{port}' is bound to unknown task '{b.task}'")
            if b.port not in descs[b.task].output_names:
                raise GraphError(f"'{task}.{port}' is bound to unknown output '{b.task}.{b.port}'")

    for name, d in descs.items():
        for port in d.input_names:
            if port not in bindings.get(name, {}):
                raise UnboundInputError(name, port)

    names = list(descs)
    deps = {n: [b.task for b in bindings.get(n, {}).values() if not b.is_source] for n in names}
    order = _topological_order(names, deps)

    budget = int(getattr(config, "threads", 1))
    nodes: Dict[str, Node] = {}
    edges: List[Edge] = []
    for name in order:
        d = descs[name]
        ins = {port: bindings[name][port] for port in d.input_names}
        keyed = False
        for port, b in ins.items():
            if not b.is_source:
                edges.append(Edge(b.task, b.port, name, port, b.collect))
            if not b.collect:
                keyed = keyed or (b.stream.keyed if b.is_source else nodes[b.task].keyed)

        threads = min(d.threads, budget)
        if threads < d.threads:
            log.debug("%s: thread request %d clamped to budget %d", name, d.threads, budget)
        node = Node(descriptor=d, threads=threads, keyed=keyed, inputs=ins)
        node.outputs = {p: Channel(f"{name}.{p}", keyed=keyed) for p in d.output_names}
        nodes[name] = node

    return Graph(nodes, tuple(edges), _variant_of(config), budget)

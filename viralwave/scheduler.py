# viralwave/scheduler.py
from __future__ import annotations
import hashlib
import itertools
import json
import logging
import queue
import threading
import time
from collections import OrderedDict, deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from viralwave.channel import Keyed
from viralwave.descriptor import TaskDescriptor
from viralwave.errors import ExternalToolError, JoinMissError
from viralwave.graph import Graph, Node

log = logging.getLogger("viralwave.scheduler")


class InstanceState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL


TERMINAL = frozenset({InstanceState.SUCCEEDED, InstanceState.FAILED,
                      InstanceState.SKIPPED, InstanceState.CANCELLED})

# terminal without output
DEAD = frozenset({InstanceState.FAILED, InstanceState.SKIPPED, InstanceState.CANCELLED})

_ALLOWED = {
    InstanceState.PENDING: {InstanceState.READY, InstanceState.SKIPPED, InstanceState.CANCELLED},
    InstanceState.READY: {InstanceState.RUNNING, InstanceState.SKIPPED, InstanceState.CANCELLED},
    InstanceState.RUNNING: {InstanceState.SUCCEEDED, InstanceState.FAILED, InstanceState.CANCELLED},
}


def _sig(task: str, key: Optional[str], inputs: Dict[str, Any]) -> str:
    payload = json.dumps({"task": task, "key": key, "inputs": inputs}, sort_keys=True, default=str)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


@dataclass(eq=False)
class TaskInstance:
    """One invocation of a descriptor. Only the scheduler changes its state."""

    descriptor: TaskDescriptor
    key: Optional[str]
    inputs: Dict[str, Any]
    threads: int
    seq: int = 0
    workdir: Optional[Path] = None
    state: InstanceState = InstanceState.PENDING
    outputs: Dict[str, Any] = field(default_factory=dict)
    cause: Optional[str] = None
    error: Optional[BaseException] = None
    started: Optional[float] = None
    finished: Optional[float] = None
    signature: str = ""

    def __post_init__(self):
        if not self.signature:
            self.signature = _sig(self.task, self.key, self.inputs)

    @property
    def task(self) -> str:
        return self.descriptor.name

    @property
    def label(self) -> str:
        return f"{self.task}[{self.key}]" if self.key is not None else self.task

    @property
    def duration(self) -> Optional[float]:
        if self.started is None or self.finished is None:
            return None
        return self.finished - self.started

    def advance(self, state: InstanceState, cause: Optional[str] = None) -> None:
        if state not in _ALLOWED.get(self.state, ()):
            raise RuntimeError(f"{self.label}: illegal transition {self.state.value} -> {state.value}")
        self.state = state
        if cause is not None:
            self.cause = cause
        if state is InstanceState.RUNNING:
            self.started = time.time()
        elif state in TERMINAL:
            self.finished = time.time()

    def __repr__(self) -> str:
        return f"TaskInstance({self.label}, {self.state.value})"


@dataclass
class JoinMiss:
    task: str
    key: Any
    reason: JoinMissError


@dataclass
class RunSummary:
    variant: str
    budget: int
    instances: List[TaskInstance]
    join_misses: List[JoinMiss]
    peak_threads: int
    cancelled: bool

    def by_state(self, state: InstanceState) -> List[TaskInstance]:
        return [i for i in self.instances if i.state is state]

    @property
    def failed(self) -> List[TaskInstance]:
        return self.by_state(InstanceState.FAILED)

    @property
    def ok(self) -> bool:
        return not self.cancelled and not self.failed

    def state_of(self, task: str, key: Optional[str] = None) -> Optional[InstanceState]:
        for inst in self.instances:
            if inst.task == task and inst.key == key:
                return inst.state
        return None


class _Inbox:
    """Input buffers of one task while the run is in flight."""

    def __init__(self, node: Node, upstream_keyed: Dict[str, bool]):
        self.node = node
        self.keyed_ports: List[str] = []
        self.bcast_ports: List[str] = []
        self.collect_ports: List[str] = []
        for port, b in node.inputs.items():
            if b.collect:
                self.collect_ports.append(port)
            elif upstream_keyed[port]:
                self.keyed_ports.append(port)
            else:
                self.bcast_ports.append(port)
        self.pending: "OrderedDict[Any, Dict[str, deque]]" = OrderedDict()
        self.joined: "OrderedDict[Any, List[Dict[str, Any]]]" = OrderedDict()
        self.bcast: Dict[str, List[Any]] = {p: [] for p in self.bcast_ports}
        self.collected: Dict[str, List[Any]] = {p: [] for p in self.collect_ports}
        self.batches: Dict[str, List[Any]] = {}
        self.open_ports: Set[str] = set(node.inputs)
        self.poisoned: Set[Any] = set()
        self.deferred: Dict[Any, str] = {}
        self.finalized = False
        self.closed = False

    @property
    def all_closed(self) -> bool:
        return not self.open_ports


class Scheduler:
    """
    Drives a Graph to completion.

    One coordinator thread (the caller of ``run``) owns every TaskInstance,
    the thread budget and all task output channels. Worker threads only run
    ``executor.execute`` and post the result on the event queue; feeder
    threads drain the external source streams onto the same queue. The
    coordinator blocks on that queue between events.
    """

    def __init__(self, graph: Graph, executor, *, budget: Optional[int] = None,
                 workdir: Optional[Path] = None, max_workers: Optional[int] = None):
        self.graph = graph
        self.executor = executor
        self.budget = int(budget if budget is not None else graph.budget)
        self.workdir = Path(workdir).absolute() if workdir is not None else None
        self.max_workers = max_workers or max(1, self.budget)

        self.instances: List[TaskInstance] = []
        self.join_misses: List[JoinMiss] = []
        self.in_use = 0
        self.peak_threads = 0

        self._events: "queue.SimpleQueue[Tuple]" = queue.SimpleQueue()
        self._pool: Optional[ThreadPoolExecutor] = None
        self._cancel = threading.Event()
        self._ready: List[TaskInstance] = []
        self._running: Set[TaskInstance] = set()
        self._seen: Dict[str, Set[str]] = {name: set() for name in graph.nodes}
        self._by_key: Dict[Tuple[str, Any], List[TaskInstance]] = {}
        self._by_task: Dict[str, List[TaskInstance]] = {name: [] for name in graph.nodes}
        self._seq = itertools.count()
        self._inbox: Dict[str, _Inbox] = {}
        self._source_ports: Dict[int, List[Tuple[str, str]]] = {}
        for node in graph.nodes.values():
            upstream_keyed = {
                port: (b.stream.keyed if b.is_source else graph.node(b.task).keyed)
                for port, b in node.inputs.items()
            }
            self._inbox[node.name] = _Inbox(node, upstream_keyed)

    # ------------------------------
    # public
    # ------------------------------
    def run(self) -> RunSummary:
        streams = self._start_feeders()
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="viralwave-worker")
        self._pool = pool
        try:
            for node in self.graph.nodes.values():
                if not node.inputs:
                    self._finalize(node.name)
            self._settle()
            while not self._done():
                self._admit()
                if self._done():
                    break
                event = self._events.get()
                self._handle(event)
                self._settle()
        finally:
            pool.shutdown(wait=True)
            if self._cancel.is_set():
                self._drain_events()
                self._on_cancel()
                self._close_everything()
        log.debug("run finished: %d instance(s), %d source stream(s)", len(self.instances), streams)
        return RunSummary(
            variant=self.graph.variant,
            budget=self.budget,
            instances=list(self.instances),
            join_misses=list(self.join_misses),
            peak_threads=self.peak_threads,
            cancelled=self._cancel.is_set(),
        )

    def cancel(self) -> None:
        """Stop dispatching and terminate running processes. Safe from any thread."""
        if self._cancel.is_set():
            return
        self._cancel.set()
        self._events.put(("cancel",))
        self.executor.terminate_all()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # ------------------------------
    # sources
    # ------------------------------
    def _start_feeders(self) -> int:
        by_stream: Dict[int, Any] = {}
        for task, port, b in self.graph.sources():
            sid = id(b.stream)
            by_stream[sid] = b.stream
            self._source_ports.setdefault(sid, []).append((task, port))

        for sid, stream in by_stream.items():
            t = threading.Thread(target=self._feed, args=(sid, stream),
                                 name=f"viralwave-feed-{getattr(stream, 'name', sid)}", daemon=True)
            t.start()
        return len(by_stream)

    def _feed(self, sid: int, stream) -> None:
        try:
            for rec in stream:
                if self._cancel.is_set():
                    return
                self._events.put(("record", sid, rec))
        finally:
            self._events.put(("eos", sid))

    # ------------------------------
    # events
    # ------------------------------
    def _handle(self, event: Tuple) -> None:
        kind = event[0]
        if kind == "cancel":
            self._on_cancel()
        elif self._cancel.is_set():
            if kind == "done":
                self._release(event[1])
        elif kind == "record":
            _, sid, rec = event
            for task, port in self._source_ports.get(sid, []):
                self._deliver(task, port, rec)
        elif kind == "eos":
            for task, port in self._source_ports.get(event[1], []):
                self._close_port(task, port)
        elif kind == "done":
            _, inst, outputs, error = event
            self._release(inst)
            if error is None:
                self._on_success(inst, outputs)
            else:
                self._on_failure(inst, error)

    def _release(self, inst: TaskInstance) -> None:
        if inst in self._running:
            self._running.discard(inst)
            self.in_use -= inst.threads

    def _drain_events(self) -> None:
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return
            if event[0] == "done":
                self._release(event[1])

    # ------------------------------
    # input buffering and instance creation
    # ------------------------------
    def _deliver(self, task: str, port: str, rec: Any) -> None:
        box = self._inbox[task]
        if port in box.collect_ports:
            box.collected[port].append(rec)
            return
        if port in box.bcast_ports:
            box.bcast[port].append(rec)
            if box.node.keyed:
                for key in list(box.joined):
                    self._spawn(task, key)
            else:
                self._spawn(task, None)
            return

        key, value = rec.key, rec.value
        if key in box.poisoned:
            return
        slots = box.pending.setdefault(key, {p: deque() for p in box.keyed_ports})
        slots[port].append(value)
        while all(slots[p] for p in box.keyed_ports):
            box.joined.setdefault(key, []).append({p: slots[p].popleft() for p in box.keyed_ports})
        if not any(slots.values()):
            del box.pending[key]
        if key in box.joined:
            self._spawn(task, key)

    def _combinations(self, box: _Inbox, key: Any) -> List[Dict[str, Any]]:
        fixed = list(box.bcast_ports)
        if any(not box.bcast[p] for p in fixed):
            return []
        if any(p not in box.batches for p in box.collect_ports):
            return []
        base = [{}] if key is None else box.joined.get(key, [])
        out = []
        for joined in base:
            for values in itertools.product(*(box.bcast[p] for p in fixed)):
                inputs = dict(joined)
                inputs.update(zip(fixed, values))
                inputs.update(box.batches)
                out.append({p: inputs[p] for p in box.node.inputs})
        return out

    def _spawn(self, task: str, key: Any) -> None:
        box = self._inbox[task]
        if box.node.keyed and key is None:
            return
        for inputs in self._combinations(box, key):
            self._create(box.node, key, inputs)

    def _create(self, node: Node, key: Any, inputs: Dict[str, Any]) -> Optional[TaskInstance]:
        inst = TaskInstance(node.descriptor, key, inputs, min(node.threads, self.budget), seq=next(self._seq))
        if inst.signature in self._seen[node.name]:
            return None
        self._seen[node.name].add(inst.signature)
        if self.workdir is not None:
            inst.workdir = self.workdir / (str(key) if key is not None else "_all") / f"{node.name}-{inst.signature[:8]}"
        self.instances.append(inst)
        self._by_key.setdefault((node.name, key), []).append(inst)
        self._by_task[node.name].append(inst)

        if node.descriptor.should_skip(inputs):
            inst.advance(InstanceState.SKIPPED, "skip_when")
            log.info("[SKIP] %s (skip_when)", inst.label)
            self._no_output(node.name, key, f"{inst.label} skipped")
        else:
            inst.advance(InstanceState.READY)
            self._ready.append(inst)
        return inst

    def _record_skip(self, node: Node, key: Any, cause: str) -> None:
        inst = TaskInstance(node.descriptor, key, {}, min(node.threads, self.budget), seq=next(self._seq))
        inst.advance(InstanceState.SKIPPED, cause)
        self.instances.append(inst)
        self._by_key.setdefault((node.name, key), []).append(inst)
        self._by_task[node.name].append(inst)
        log.info("[SKIP] %s (%s)", inst.label, cause)

    # ------------------------------
    # admission
    # ------------------------------
    def _admit(self) -> None:
        if self._cancel.is_set():
            return
        for inst in list(self._ready):
            if self._cancel.is_set():
                return
            if inst.threads > self.budget - self.in_use:
                continue
            self._ready.remove(inst)
            self.in_use += inst.threads
            self.peak_threads = max(self.peak_threads, self.in_use)
            inst.advance(InstanceState.RUNNING)
            self._running.add(inst)
            log.info("[RUN ] %s threads=%d (in use %d/%d)", inst.label, inst.threads, self.in_use, self.budget)
            self._pool.submit(self._work, inst)

    def _work(self, inst: TaskInstance) -> None:
        try:
            outputs = self.executor.execute(inst)
        except Exception as e:
            self._events.put(("done", inst, None, e))
        else:
            self._events.put(("done", inst, outputs, None))

    # ------------------------------
    # results
    # ------------------------------
    def _on_success(self, inst: TaskInstance, outputs: Dict[str, Any]) -> None:
        desc = inst.descriptor
        outputs = dict(outputs or {})
        missing = [p for p in desc.output_names if p not in outputs]
        if missing:
            self._on_failure(inst, ExternalToolError(inst.label, missing=missing))
            return
        if desc.complete is not None and not desc.is_complete(outputs):
            self._on_failure(inst, ExternalToolError(inst.label, detail="completion check failed"))
            return

        inst.outputs = outputs
        inst.advance(InstanceState.SUCCEEDED)
        log.info("[DONE] %s (%.1fs)", inst.label, inst.duration or 0.0)

        node = self.graph.node(inst.task)
        for port in desc.output_names:
            rec = Keyed(inst.key, outputs[port]) if node.keyed else outputs[port]
            node.outputs[port].emit(rec)
            for edge in self.graph.consumers(inst.task):
                if edge.out_port == port:
                    self._deliver(edge.consumer, edge.in_port, rec)

    def _on_failure(self, inst: TaskInstance, error: BaseException) -> None:
        inst.error = error
        inst.advance(InstanceState.FAILED, str(error))
        log.error("[FAIL] %s: %s", inst.label, error)
        if inst.workdir is not None:
            log.error("[FAIL] %s: see %s", inst.label, inst.workdir)
        self._no_output(inst.task, inst.key, f"{inst.label} failed")

    def _no_output(self, task: str, key: Any, cause: str) -> None:
        """
        ``task`` will produce nothing more for ``key``: once none of its
        instances for that key is live or succeeded and no broadcast value can
        still arrive, every keyed consumer of the key is skipped, transitively.
        Collect edges just get one record less; an un-keyed producer is
        handled when its consumers finalize.
        """
        if key is None:
            return
        if any(i.state not in DEAD for i in self._by_key.get((task, key), [])):
            return
        own = self._inbox[task]
        if key not in own.poisoned and any(p in own.open_ports for p in own.bcast_ports):
            # a broadcast value still to come makes a new instance for key
            own.deferred.setdefault(key, cause)
            return
        for edge in self.graph.consumers(task):
            if edge.collect:
                continue
            consumer = self.graph.node(edge.consumer)
            box = self._inbox[consumer.name]
            if not consumer.keyed or key in box.poisoned:
                continue
            box.poisoned.add(key)
            box.pending.pop(key, None)
            if not self._by_key.get((consumer.name, key)):
                self._record_skip(consumer, key, cause)
            self._no_output(consumer.name, key, cause)

    # ------------------------------
    # end of stream
    # ------------------------------
    def _close_port(self, task: str, port: str) -> None:
        box = self._inbox[task]
        if port not in box.open_ports:
            return
        box.open_ports.discard(port)
        if port in box.collect_ports:
            b = box.node.inputs[port]
            upstream_keyed = b.stream.keyed if b.is_source else self.graph.node(b.task).keyed
            recs = box.collected[port]
            if upstream_keyed:
                recs = [r.value for r in sorted(recs, key=lambda r: r.key)]
            box.batches[port] = list(recs)
            if box.node.keyed:
                for key in list(box.joined):
                    self._spawn(task, key)
            else:
                self._spawn(task, None)
        if port in box.bcast_ports and not box.open_ports.intersection(box.bcast_ports):
            deferred, box.deferred = box.deferred, {}
            for key, cause in deferred.items():
                self._no_output(task, key, cause)
        if box.all_closed:
            self._finalize(task)

    def _finalize(self, task: str) -> None:
        """Every input of ``task`` is closed: settle partial joins and missing inputs."""
        box = self._inbox[task]
        if box.finalized:
            return
        box.finalized = True
        node = box.node

        for key, slots in list(box.pending.items()):
            if key in box.poisoned:
                continue
            missing = [p for p in box.keyed_ports if not slots[p]]
            miss = JoinMiss(task, key, JoinMissError(task, key, missing))
            self.join_misses.append(miss)
            log.warning("join miss: %s", miss.reason)
        box.pending.clear()

        empty = [p for p in box.bcast_ports if not box.bcast[p]]
        if not empty:
            if not node.inputs:
                self._create(node, None, {})
            return
        cause = f"no input on {', '.join(empty)}"
        if node.keyed:
            for key in list(box.joined):
                if key not in box.poisoned and not self._by_key.get((task, key)):
                    box.poisoned.add(key)
                    self._record_skip(node, key, cause)
                    self._no_output(task, key, cause)
        elif not self._by_key.get((task, None)):
            self._record_skip(node, None, cause)

    def _settle(self) -> None:
        """Close the output channels of every task that can no longer produce."""
        changed = True
        while changed:
            changed = False
            for name in self.graph.order:
                box = self._inbox[name]
                if box.closed or not box.finalized:
                    continue
                if any(not i.state.terminal for i in self._by_task[name]):
                    continue
                box.closed = True
                changed = True
                for ch in box.node.outputs.values():
                    ch.close()
                for edge in self.graph.consumers(name):
                    self._close_port(edge.consumer, edge.in_port)

    def _done(self) -> bool:
        if self._cancel.is_set():
            return True
        return all(b.closed for b in self._inbox.values()) and not self._running

    # ------------------------------
    # cancellation
    # ------------------------------
    def _on_cancel(self) -> None:
        for inst in self.instances:
            if not inst.state.terminal:
                inst.advance(InstanceState.CANCELLED, "run cancelled")
                log.warning("[CANCEL] %s", inst.label)
        self._ready.clear()

    def _close_everything(self) -> None:
        for node in self.graph.nodes.values():
            for ch in node.outputs.values():
                if not ch.closed:
                    ch.close()

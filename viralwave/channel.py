# viralwave/channel.py
from __future__ import annotations
import itertools
import threading
from collections import OrderedDict, deque, namedtuple
from typing import Any, Callable, Iterable, Iterator, List, Optional

from viralwave.errors import ChannelClosedError

# one record of a keyed channel
Keyed = namedtuple("Keyed", ["key", "value"])


class Stream:
    """
    Read side shared by channels and their derived views. Operators are lazy:
    nothing is pulled from upstream until the result is iterated.
    """

    name: str = ""
    keyed: bool = False

    def __iter__(self) -> Iterator[Any]:
        raise NotImplementedError

    def map(self, fn: Callable[[Any], Any]) -> "Stream":
        """Apply ``fn`` to each value. Keys and order are kept."""
        def gen():
            for rec in self:
                if self.keyed:
                    yield Keyed(rec.key, fn(rec.value))
                else:
                    yield fn(rec)
        return _Derived(gen, keyed=self.keyed, name=f"{self.name}.map")

    def take(self, n: int) -> "Stream":
        """First ``n`` records, or every record when ``n`` is negative."""
        n = int(n)
        if n < 0:
            return _Derived(lambda: iter(self), keyed=self.keyed, name=f"{self.name}.take(-1)")
        return _Derived(lambda: itertools.islice(iter(self), n), keyed=self.keyed,
                        name=f"{self.name}.take({n})")

    def join(self, other: "Stream", key_fn: Optional[Callable[[Any], Any]] = None) -> "Stream":
        """
        Inner join by key. Keyed channels join on the record key, plain ones
        on ``key_fn(value)``. Records pair up in arrival order per key; a key
        seen on only one side yields nothing. Emits ``Keyed(key, (left, right))``.
        """
        def key_of(stream, rec):
            if stream.keyed:
                return rec.key, rec.value
            if key_fn is None:
                raise ValueError(f"join on un-keyed channel '{stream.name}' needs key_fn")
            return key_fn(rec), rec

        def gen():
            left: "OrderedDict[Any, deque]" = OrderedDict()
            for rec in self:
                k, v = key_of(self, rec)
                left.setdefault(k, deque()).append(v)
            for rec in other:
                k, v = key_of(other, rec)
                waiting = left.get(k)
                if waiting:
                    yield Keyed(k, (waiting.popleft(), v))
        return _Derived(gen, keyed=True, name=f"{self.name}.join({other.name})")

    def collect(self) -> "Stream":
        """
        One batch record after upstream end-of-stream: the list of values,
        ordered by key for keyed channels. An empty upstream gives ``[]``.
        """
        def gen():
            recs = list(self)
            if self.keyed:
                recs = [r.value for r in sorted(recs, key=lambda r: r.key)]
            yield recs
        return _Derived(gen, keyed=False, name=f"{self.name}.collect")

    def drain(self) -> List[Any]:
        return list(self)


class _Derived(Stream):
    def __init__(self, factory: Callable[[], Iterable[Any]], *, keyed: bool, name: str = ""):
        self._factory = factory
        self.keyed = keyed
        self.name = name

    def __iter__(self) -> Iterator[Any]:
        return iter(self._factory())

    def __repr__(self) -> str:
        return f"<stream {self.name} keyed={self.keyed}>"


class Channel(Stream):
    """
    Ordered record buffer with one writer and any number of readers.

    Iteration blocks until a new record is emitted or the channel is closed,
    and every reader sees every record from the start. A keyed channel only
    accepts ``Keyed`` records, a broadcast channel only plain values.
    """

    def __init__(self, name: str = "", *, keyed: bool = False):
        self.name = name
        self.keyed = keyed
        self._records: List[Any] = []
        self._closed = False
        self._cond = threading.Condition()

    @classmethod
    def of(cls, *values, name: str = "") -> "Channel":
        """Closed broadcast channel holding ``values``."""
        ch = cls(name)
        for v in values:
            ch.emit(v)
        ch.close()
        return ch

    @classmethod
    def from_pairs(cls, pairs: Iterable, name: str = "") -> "Channel":
        """Closed keyed channel from ``(key, value)`` pairs."""
        ch = cls(name, keyed=True)
        for k, v in pairs:
            ch.emit(Keyed(k, v))
        ch.close()
        return ch

    def emit(self, record: Any) -> None:
        is_keyed = isinstance(record, Keyed)
        if is_keyed != self.keyed:
            kind = "keyed" if self.keyed else "broadcast"
            raise TypeError(f"channel '{self.name}' is {kind}, got {record!r}")
        with self._cond:
            if self._closed:
                raise ChannelClosedError(f"emit on closed channel '{self.name}'")
            self._records.append(record)
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @property
    def records(self) -> List[Any]:
        """Snapshot of what has been emitted so far."""
        with self._cond:
            return list(self._records)

    def __iter__(self) -> Iterator[Any]:
        i = 0
        while True:
            with self._cond:
                while i >= len(self._records) and not self._closed:
                    self._cond.wait()
                if i >= len(self._records):
                    return
                rec = self._records[i]
            i += 1
            yield rec

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<channel {self.name} keyed={self.keyed} {state} n={len(self._records)}>"

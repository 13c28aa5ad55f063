# viralwave/utils/flags.py
from __future__ import annotations
import functools
import json
import time
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional

DONE_FLAG = ".done"
FAILED_FLAG = ".failed"

# returned by a skip_if_done wrapper instead of calling through
CACHED = "cached"


def _files(outputs: Any) -> Iterator[Path]:
    if isinstance(outputs, Mapping):
        for value in outputs.values():
            yield from _files(value)
    elif isinstance(outputs, (list, tuple)):
        for value in outputs:
            yield from _files(value)
    elif isinstance(outputs, (str, Path)):
        yield Path(outputs)


def _present(path: Path) -> bool:
    # a directory counts once it holds something
    try:
        if path.is_dir():
            return any(path.iterdir())
        return path.is_file() and path.stat().st_size > 0
    except FileNotFoundError:
        return False


def missing_outputs(outputs: Any) -> List[Path]:
    """Declared output paths that are absent or empty."""
    return [p for p in _files(outputs) if not _present(p)]


def outputs_ok(outputs: Any) -> bool:
    return not missing_outputs(outputs)


def _task_of(args, kwargs) -> Optional[Any]:
    if "task" in kwargs:
        return kwargs["task"]
    return next((a for a in args if hasattr(a, "outputs") and hasattr(a, "workdir")), None)


def write_flag(workdir: Path, status: str, **meta) -> Path:
    """Write ``.done`` (status OK) or ``.failed`` plus a ``<flag>.json`` sidecar; drop the opposite flag."""
    flag, other = (DONE_FLAG, FAILED_FLAG) if status == "OK" else (FAILED_FLAG, DONE_FLAG)
    workdir.mkdir(parents=True, exist_ok=True)
    (workdir / other).unlink(missing_ok=True)
    (workdir / flag).write_text(status + "\n")
    record = {"status": status, "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"), **meta}
    (workdir / f"{flag}.json").write_text(json.dumps(record, indent=2, ensure_ascii=False))
    return workdir / flag


def skip_if_done():
    """
    Return CACHED without calling through when the task's ``.done`` flag is
    present and every declared output still exists and is non-empty. A flag
    whose outputs were removed or truncated means the task runs again.
    """
    def deco(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            task = _task_of(args, kwargs)
            if task is not None and (Path(task.workdir) / DONE_FLAG).exists() and outputs_ok(task.outputs):
                return CACHED
            return func(*args, **kwargs)
        return wrapper
    return deco


def flag_on_complete():
    """Mark the task's workdir ``.done`` or ``.failed`` once the wrapped call returns or raises."""
    def deco(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            task = _task_of(args, kwargs)
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                if task is not None:
                    write_flag(Path(task.workdir), "FAILED", error=str(e))
                raise
            if task is None or result == CACHED:
                return result
            missing = missing_outputs(task.outputs)
            if missing:
                write_flag(Path(task.workdir), "FAILED", missing_or_empty=[str(p) for p in missing])
            else:
                write_flag(Path(task.workdir), "OK", outputs=[str(p) for p in _files(task.outputs)])
            return result
        return wrapper
    return deco

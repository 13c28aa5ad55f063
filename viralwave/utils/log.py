import datetime
import json
import logging
import threading
import traceback
from functools import wraps
from pathlib import Path
from typing import Any, Dict, List, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: int = logging.INFO, *, log_file: Optional[Path] = None) -> None:
    """Configure the ``viralwave`` logger tree and optionally tee into *log_file*."""
    root = logging.getLogger("viralwave")
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for h in handlers:
        h.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(h)
    root.propagate = False


class Logger:
    """
    Wraps a callable and keeps one trace record per call (start, end,
    duration, first argument, error). Exceptions propagate unchanged.
    ``save_logs_to_file`` writes the records as JSON lines.
    """

    def __init__(self, func, *, task_id=None, log=None):
        self.func = func
        self.task_id = task_id
        self.log = log or logging.getLogger("viralwave.trace")
        self.logs: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        wraps(func)(self)

    def __call__(self, *args, **kwargs):
        name = self.func.__name__
        subject = str(args[0]) if args else None
        started = datetime.datetime.now()
        self.log.debug("%s %s START %s", self.task_id or "-", name, subject)
        record: Dict[str, Any] = {
            "task_id": self.task_id,
            "function": name,
            "subject": subject,
            "start_time": started.strftime(DATE_FORMAT),
            "error": None,
            "traceback": None,
        }
        try:
            return self.func(*args, **kwargs)
        except Exception as e:
            record["error"] = str(e)
            record["traceback"] = traceback.format_exc()
            raise
        finally:
            ended = datetime.datetime.now()
            record["end_time"] = ended.strftime(DATE_FORMAT)
            record["duration_sec"] = round((ended - started).total_seconds(), 4)
            self.log.debug("%s %s %s (%.4fs)", self.task_id or "-", name,
                           "ERROR" if record["error"] else "END", record["duration_sec"])
            with self._lock:
                self.logs.append(record)

    def get_logs(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self.logs)

    def save_logs_to_file(self, path, mode: str = "a") -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, mode, encoding="utf-8") as f:
            for rec in self.get_logs():
                f.write(json.dumps(rec, ensure_ascii=False) + "\n")

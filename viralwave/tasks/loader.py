# viralwave/tasks/loader.py
from __future__ import annotations
import importlib
import logging
import pkgutil
from typing import Type

from viralwave.errors import TaskLoadError
from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import TaskRegistry

log = logging.getLogger("viralwave.tasks")

PACKAGE_ROOT = "viralwave.tasks"


def autoload_tasks(package_root: str = PACKAGE_ROOT) -> None:
    """
    Import every ``<package_root>.<tool>[.<func>].main`` module so that its
    @register_task decorator runs. A module that fails to import is an
    installation defect and raises TaskLoadError.
    """
    pkg = importlib.import_module(package_root)
    for m in pkgutil.walk_packages(pkg.__path__, pkg.__name__ + "."):
        if not m.name.endswith(".main"):
            continue
        try:
            importlib.import_module(m.name)
        except ImportError as e:
            raise TaskLoadError(f"Cannot import {m.name}: {e}") from e


def load_task_class(type_name: str) -> Type[Task]:
    """
    Resolve a TYPE such as ``samtools.sort`` to its Task class, importing
    ``viralwave.tasks.samtools.sort.main`` on demand.
    """
    cls = TaskRegistry.lookup(type_name)
    if cls is None:
        mod_name = f"{PACKAGE_ROOT}.{type_name.lower()}.main"
        try:
            importlib.import_module(mod_name)
        except ImportError as e:
            raise TaskLoadError(f"Cannot import {mod_name}: {e}") from e
        cls = TaskRegistry.lookup(type_name)
        if cls is None:
            raise TaskLoadError(f"{mod_name} does not register TYPE '{type_name}'")
    if not isinstance(cls, type) or not issubclass(cls, Task):
        raise TaskLoadError(f"TYPE '{type_name}' is not a Task subclass")
    return cls

# viralwave/tasks/task_registry.py
from __future__ import annotations
from typing import Dict, List, Optional, Type

from viralwave.errors import TaskLoadError


class TaskRegistry:
    """Command template classes by TYPE (``fastp``, ``samtools.sort`` ...). Names are case-insensitive."""

    _templates: Dict[str, Type] = {}

    @staticmethod
    def _norm(type_name: str) -> str:
        return str(type_name).strip().lower()

    @classmethod
    def add(cls, template: Type) -> Type:
        name = cls._norm(getattr(template, "TYPE", "") or "")
        if not name:
            raise TaskLoadError(f"{template.__name__} has no TYPE")
        known = cls._templates.get(name)
        if known is not None and known.__qualname__ != template.__qualname__:
            raise TaskLoadError(f"TYPE '{name}' claimed by both {known.__name__} and {template.__name__}")
        cls._templates[name] = template
        return template

    @classmethod
    def lookup(cls, type_name: str) -> Optional[Type]:
        return cls._templates.get(cls._norm(type_name))

    @classmethod
    def types(cls) -> List[str]:
        return sorted(cls._templates)


def register_task(type_name: Optional[str] = None):
    """Class decorator: set TYPE (when given) and add the class to the registry."""
    def deco(template: Type) -> Type:
        if type_name:
            template.TYPE = type_name
        return TaskRegistry.add(template)
    return deco

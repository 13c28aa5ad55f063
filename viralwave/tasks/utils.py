# viralwave/tasks/utils.py
from __future__ import annotations
import shlex
from typing import Any, Dict, Iterable, List, Sequence, Union

Line = Union[str, Sequence[Any]]

# passed through shell_line unquoted
SHELL_OPERATORS = frozenset({">", ">>", "<", "|", "2>", "&>", "&&", "||"})


def _binds(value: Any) -> List[str]:
    # "a,b" or ["a", "b"]
    if isinstance(value, str):
        return [b.strip() for b in value.split(",") if b.strip()]
    if isinstance(value, (list, tuple)):
        return [str(b) for b in value]
    return []


def containerize(argv: Sequence[Any], params: Dict[str, Any]) -> List[str]:
    """Prefix *argv* with ``singularity exec [-B bind ...] <image>`` when ``params['image']`` is set."""
    argv = [str(a) for a in argv]
    image = params.get("image")
    if not image:
        return argv
    cmd = [str(params.get("singularity_bin") or "singularity"), "exec"]
    for b in _binds(params.get("binds")):
        cmd += ["-B", b]
    return cmd + [str(image)] + argv


def shell_line(*parts: Union[str, Sequence[Any]]) -> str:
    """Join token lists and bare operators (``|``, ``>`` ...) into one quoted shell line."""
    out: List[str] = []
    for part in parts:
        for tok in ([part] if isinstance(part, str) else part):
            tok = str(tok)
            out.append(tok if tok in SHELL_OPERATORS else shlex.quote(tok))
    return " ".join(out)


def render_lines(lines: Iterable[Line]) -> List[str]:
    """Token lists are shell-joined; strings are kept as written."""
    return [shlex.join([str(t) for t in ln]) if isinstance(ln, (list, tuple)) else str(ln)
            for ln in lines]


def split_reads(reads: Any) -> tuple:
    """(r1, r2) for a paired tuple, (path, None) for single-end reads."""
    if isinstance(reads, (list, tuple)):
        if len(reads) == 1:
            return str(reads[0]), None
        if len(reads) == 2:
            return str(reads[0]), str(reads[1])
        raise ValueError(f"expected one or two read files, got {len(reads)}")
    return str(reads), None

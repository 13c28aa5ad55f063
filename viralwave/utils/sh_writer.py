# viralwave/utils/sh_writer.py
from __future__ import annotations
import datetime
import shlex
from pathlib import Path
from typing import List, Optional

from viralwave.tasks.utils import render_lines


def script_header(workdir: Optional[Path] = None, *, set_x: bool = False) -> List[str]:
    lines = [
        "#!/usr/bin/env bash",
        "set -euo pipefail",
        "trap 'echo \"[ERR] $(date +%F-%T) $0:$LINENO\" >&2' ERR",
        f"# rendered {datetime.datetime.now().isoformat(timespec='seconds')}",
    ]
    if set_x:
        lines.append("set -x")
    if workdir is not None:
        lines.append(f"cd {shlex.quote(str(workdir))}")
    return lines


def write_task_script(task, path: Path, *, set_x: bool = False) -> Path:
    """Render *task* to an executable bash script that runs inside its workdir."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    body = render_lines(task.to_sh())
    path.write_text("\n".join(script_header(Path(task.workdir).absolute(), set_x=set_x) + body) + "\n")
    path.chmod(0o755)
    return path

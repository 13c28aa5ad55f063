from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize


@register_task("cojac")
class CojacTask(Task):
    """
    Search for co-occurring mutations on amplicons.

    Runs:
      cojac cooc-mutbamscan -a {bam} -m {vocdir} -b {amplicons} -j {sample}.cooc.json
    """
    TYPE = "cojac"

    INPUTS = {
        "bam": {"type": "path", "required": True, "desc": "Sorted BAM"},
        "bai": {"type": "path", "required": True, "desc": "BAM index"},
    }
    OUTPUTS = {
        "json": {"type": "path", "desc": "Co-occurrence counts"},
    }
    DEFAULTS: Dict[str, Any] = {
        "vocdir": None,
        "amplicons": None,
        "cojac_bin": "cojac",
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        return {"json": self.path(f"{self.prefix}.cooc.json")}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        vocdir = params.get("vocdir")
        if not vocdir:
            raise ValueError("[cojac] PARAMS.vocdir (variant definitions) is required")
        argv = [
            params.get("cojac_bin", "cojac"), "cooc-mutbamscan",
            "-a", inputs["bam"],
            "-m", vocdir,
            "-j", outputs["json"],
        ]
        if params.get("amplicons"):
            argv += ["-b", params["amplicons"]]
        return [containerize(argv, params)]

from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional
import os

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize, split_reads


@register_task("flye")
class FlyeTask(Task):
    """De novo assembly of long reads."""
    TYPE = "flye"

    INPUTS = {
        "reads": {"type": "tuple", "required": True, "desc": "Extracted long reads"},
    }
    OUTPUTS = {
        "dir":      {"type": "dir",  "desc": "flye output directory"},
        "assembly": {"type": "path", "desc": "Assembled contigs (FASTA)"},
    }
    DEFAULTS: Dict[str, Any] = {
        "read_type": "--nano-raw",
        "genome_size": None,
        "meta": False,
        "flye_bin": "flye",
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        out_dir = self.path(f"{self.prefix}.flye")
        return {"dir": out_dir, "assembly": os.path.join(out_dir, "assembly.fasta")}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        reads, _ = split_reads(inputs["reads"])
        argv = [
            params.get("flye_bin", "flye"),
            params.get("read_type", "--nano-raw"), reads,
            "--out-dir", outputs["dir"],
            "--threads", str(threads),
        ]
        if params.get("genome_size"):
            argv += ["--genome-size", str(params["genome_size"])]
        if params.get("meta"):
            argv.append("--meta")
        return [containerize(argv, params)]

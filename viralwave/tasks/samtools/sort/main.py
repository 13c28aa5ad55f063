from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize, shell_line


@register_task("samtools.sort")
class SamtoolsSortTask(Task):
    """
    Sort and index a BAM.
    Inputs:
      bam: unsorted BAM
    Outputs:
      bam: {workdir}/{sample}.sorted.bam
      bai: {workdir}/{sample}.sorted.bam.bai
    Params:
      mem_per_thread, tmp_dir, samtools_bin, image, binds, singularity_bin
    """
    TYPE = "samtools.sort"

    INPUTS = {
        "bam": {"type": "path", "required": True, "desc": "Input BAM to sort"},
    }
    OUTPUTS = {
        "bam": {"type": "path", "desc": "Sorted BAM"},
        "bai": {"type": "path", "desc": "BAM index"},
    }
    DEFAULTS: Dict[str, Any] = {
        "mem_per_thread": "768M",
        "tmp_dir": None,
        "samtools_bin": "samtools",
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        bam = self.path(f"{self.prefix}.sorted.bam")
        return {"bam": bam, "bai": bam + ".bai"}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        samtools = str(params.get("samtools_bin", "samtools"))
        sort_argv = [
            samtools, "sort",
            "-@", str(threads),
            "-m", str(params.get("mem_per_thread", "768M")),
            "-o", outputs["bam"],
        ]
        if params.get("tmp_dir"):
            sort_argv += ["-T", str(params["tmp_dir"])]
        sort_argv.append(inputs["bam"])
        idx_argv = [samtools, "index", "-@", str(threads), "-b", outputs["bam"], outputs["bai"]]
        return [shell_line(containerize(sort_argv, params)), shell_line(containerize(idx_argv, params))]

from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize, shell_line, split_reads


@register_task("minimap2")
class Minimap2Task(Task):
    """
    Align reads to the reference and convert to BAM.

    Runs:
      minimap2 -ax {preset} -t {threads} {reference} {reads...} | samtools view -b -o {sample}.bam -
    """
    TYPE = "minimap2"

    INPUTS = {
        "reads":     {"type": "tuple", "required": True, "desc": "Reads to align"},
        "reference": {"type": "path",  "required": True, "desc": "Reference FASTA"},
    }
    OUTPUTS = {
        "bam": {"type": "path", "desc": "Unsorted BAM"},
    }
    DEFAULTS: Dict[str, Any] = {
        "preset": "sr",
        "minimap2_bin": "minimap2",
        "samtools_bin": "samtools",
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        return {"bam": self.path(f"{self.prefix}.bam")}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        r1, r2 = split_reads(inputs["reads"])
        align = [
            params.get("minimap2_bin", "minimap2"),
            "-ax", params.get("preset", "sr"),
            "-t", str(threads),
            inputs["reference"], r1,
        ]
        if r2:
            align.append(r2)
        to_bam = [params.get("samtools_bin", "samtools"), "view", "-b", "-o", outputs["bam"], "-"]
        return [shell_line(containerize(align, params), "|", containerize(to_bam, params))]

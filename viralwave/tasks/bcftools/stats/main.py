from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize, shell_line


@register_task("bcftools.stats")
class BcftoolsStatsTask(Task):
    """
    Runs:
      bcftools stats [-F reference] {vcf} > {sample}.stats.txt
    """
    TYPE = "bcftools.stats"

    INPUTS = {
        "vcf": {"type": "path", "required": True, "desc": "Filtered variant calls"},
    }
    OUTPUTS = {
        "stats": {"type": "path", "desc": "bcftools stats text report"},
    }
    DEFAULTS: Dict[str, Any] = {
        "reference": None,
        "bcftools_bin": "bcftools",
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        return {"stats": self.path(f"{self.prefix}.stats.txt")}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        argv = [params.get("bcftools_bin", "bcftools"), "stats"]
        if params.get("reference"):
            argv += ["-F", params["reference"]]
        argv.append(inputs["vcf"])
        return [shell_line(containerize(argv, params), ">", outputs["stats"])]

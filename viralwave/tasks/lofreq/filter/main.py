from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize


@register_task("lofreq.filter")
class LofreqFilterTask(Task):
    """Strand-bias filter on lofreq calls."""
    TYPE = "lofreq.filter"

    INPUTS = {
        "vcf": {"type": "path", "required": True, "desc": "Raw variant calls"},
    }
    OUTPUTS = {
        "vcf": {"type": "path", "desc": "Filtered variant calls"},
    }
    DEFAULTS: Dict[str, Any] = {
        "sb_mtc": "fdr",
        "sb_alpha": 0.001,
        "min_af": None,
        "lofreq_bin": "lofreq",
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        return {"vcf": self.path(f"{self.prefix}.filtered.vcf")}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        argv = [
            params.get("lofreq_bin", "lofreq"), "filter",
            "-i", inputs["vcf"],
            "-o", outputs["vcf"],
            "--sb-mtc", params.get("sb_mtc", "fdr"),
            "--sb-alpha", str(params.get("sb_alpha", 0.001)),
        ]
        if params.get("min_af") is not None:
            argv += ["--af-min", str(params["min_af"])]
        return [containerize(argv, params)]

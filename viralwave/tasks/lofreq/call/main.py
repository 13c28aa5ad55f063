from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize


@register_task("lofreq.call")
class LofreqCallTask(Task):
    """
    Low-frequency variant calling.

    Runs:
      lofreq call-parallel --pp-threads {threads} -f {reference} -o {sample}.vcf {bam}
    """
    TYPE = "lofreq.call"

    INPUTS = {
        "bam":       {"type": "path", "required": True, "desc": "Sorted BAM"},
        "bai":       {"type": "path", "required": True, "desc": "BAM index"},
        "reference": {"type": "path", "required": True, "desc": "Reference FASTA (indexed)"},
    }
    OUTPUTS = {
        "vcf": {"type": "path", "desc": "Raw variant calls"},
    }
    DEFAULTS: Dict[str, Any] = {
        "call_indels": True,
        "min_cov": None,
        "lofreq_bin": "lofreq",
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        return {"vcf": self.path(f"{self.prefix}.vcf")}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        argv = [
            params.get("lofreq_bin", "lofreq"), "call-parallel",
            "--pp-threads", str(threads),
            "-f", inputs["reference"],
            "-o", outputs["vcf"],
        ]
        if params.get("call_indels"):
            argv.append("--call-indels")
        if params.get("min_cov") is not None:
            argv += ["--min-cov", str(params["min_cov"])]
        argv.append(inputs["bam"])
        return [containerize(argv, params)]

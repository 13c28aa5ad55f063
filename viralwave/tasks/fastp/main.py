# viralwave/tasks/fastp/main.py
from __future__ import annotations
from typing import Dict, Any, List, Optional, Sequence

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize, split_reads


@register_task("fastp")
class FastpTask(Task):
    """
    Adapter/quality trimming. Paired when ``reads`` holds two files,
    single-end otherwise (long-read runs).
    """
    TYPE = "fastp"

    INPUTS: Dict[str, Any] = {
        "reads": {"type": "tuple", "required": True, "desc": "(R1, R2) or a single FASTQ(.gz)"},
    }
    OUTPUTS: Dict[str, Any] = {
        "reads": {"type": "tuple", "desc": "Trimmed FASTQ(s), same arity as the input"},
        "json":  {"type": "path",  "desc": "fastp JSON report"},
        "html":  {"type": "path",  "desc": "fastp HTML report"},
    }

    DEFAULTS: Dict[str, Any] = {
        "length_required": 50,
        "average_qual": 10,
        "qualified_quality_phred": 15,
        "trim_poly_g": True,
        "adapter_sequence": None,
        "adapter_sequence_r2": None,
        "image": None,
        "binds": None,
        "fastp_bin": "fastp",
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        _, r2 = split_reads(self.inputs["reads"])
        if r2 is None:
            reads = (self.path(f"{self.prefix}.trimmed.fastq.gz"),)
        else:
            reads = (self.path(f"{self.prefix}.trimmed_R1.fastq.gz"),
                     self.path(f"{self.prefix}.trimmed_R2.fastq.gz"))
        return {
            "reads": reads,
            "json": self.path(f"{self.prefix}.fastp.json"),
            "html": self.path(f"{self.prefix}.fastp.html"),
        }

    def _build_cmd(
        self,
        *,
        inputs: Dict[str, Any],
        outputs: Dict[str, Any],
        params: Dict[str, Any],
        threads: int,
        workdir: str,
        sample_id: Optional[str] = None,
    ) -> List[Sequence[str] | str]:
        r1, r2 = split_reads(inputs["reads"])
        out_reads = outputs["reads"]

        argv: List[str] = [str(params.get("fastp_bin", "fastp")), "--thread", str(int(threads))]
        argv += ["--in1", r1, "--out1", out_reads[0]]
        if r2:
            argv += ["--in2", r2, "--out2", out_reads[1], "--detect_adapter_for_pe"]
            if params.get("adapter_sequence_r2"):
                argv += ["--adapter_sequence_r2", str(params["adapter_sequence_r2"])]
        if params.get("adapter_sequence"):
            argv += ["--adapter_sequence", str(params["adapter_sequence"])]
        if params.get("trim_poly_g"):
            argv.append("--trim_poly_g")

        argv += [
            "--json", outputs["json"],
            "--html", outputs["html"],
            "--length_required", str(int(params.get("length_required", 50))),
            "--average_qual", str(int(params.get("average_qual", 10))),
            "--qualified_quality_phred", str(int(params.get("qualified_quality_phred", 15))),
        ]
        return [containerize(argv, params)]

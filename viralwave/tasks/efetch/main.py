from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize, shell_line


@register_task("efetch")
class EfetchReferenceTask(Task):
    """
    Fetch a reference sequence by accession (NCBI Entrez Direct).

    Runs:
      efetch -db nucleotide -id {accession} -format fasta > {workdir}/{reference_name}.fasta
    """

    TYPE = "efetch"

    INPUTS = {
        "accession": {"type": "value", "required": True, "desc": "Nucleotide accession, e.g. MN908947.3"},
    }
    OUTPUTS = {
        "fasta": {"type": "path", "desc": "Reference FASTA"},
    }
    DEFAULTS: Dict[str, Any] = {
        "efetch_bin": "efetch",
        "db": "nucleotide",
        "reference_name": None,
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        name = self.params.get("reference_name") or str(self.inputs["accession"])
        return {"fasta": self.path(f"{name}.fasta")}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        argv = [
            params.get("efetch_bin", "efetch"),
            "-db", params.get("db", "nucleotide"),
            "-id", inputs["accession"],
            "-format", "fasta",
        ]
        return [shell_line(containerize(argv, params), ">", outputs["fasta"])]

from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional
import os, shlex

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize, shell_line


@register_task("samtools.faidx")
class SamtoolsFaidxTask(Task):
    """
    Index the reference FASTA. The FASTA is linked into the task workdir
    first so the .fai lands beside it and not in the producer's workdir.
    """
    TYPE = "samtools.faidx"

    INPUTS = {
        "fasta": {"type": "path", "required": True, "desc": "Reference FASTA"},
    }
    OUTPUTS = {
        "fasta": {"type": "path", "desc": "Linked reference FASTA"},
        "fai":   {"type": "path", "desc": "FASTA index"},
    }
    DEFAULTS: Dict[str, Any] = {
        "samtools_bin": "samtools",
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        fasta = self.path(os.path.basename(str(self.inputs["fasta"])))
        return {"fasta": fasta, "fai": fasta + ".fai"}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        link = f"ln -sf {shlex.quote(os.path.abspath(str(inputs['fasta'])))} {shlex.quote(outputs['fasta'])}"
        argv = [params.get("samtools_bin", "samtools"), "faidx", outputs["fasta"]]
        return [link, shell_line(containerize(argv, params))]

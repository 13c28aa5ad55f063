from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional
import os, shlex

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize, shell_line


@register_task("cliquesnv")
class CliqueSnvTask(Task):
    """
    Haplotype reconstruction. CliqueSNV reads SAM, so the sorted BAM is
    converted in the workdir first.

    Runs:
      samtools view -h -o {sample}.sam {bam}
      java -Xmx{memory} -jar clique-snv.jar -m {method} -in {sample}.sam -outDir {sample}.cliquesnv -threads {threads}
    """
    TYPE = "cliquesnv"

    INPUTS = {
        "bam": {"type": "path", "required": True, "desc": "Sorted BAM"},
    }
    OUTPUTS = {
        "dir": {"type": "dir", "desc": "CliqueSNV output directory"},
    }
    DEFAULTS: Dict[str, Any] = {
        "method": "snv-illumina",
        "memory": "4g",
        "jar": "clique-snv.jar",
        "java_bin": "java",
        "samtools_bin": "samtools",
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        return {"dir": self.path(f"{self.prefix}.cliquesnv")}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        sam = os.path.join(workdir, f"{sample_id or 'reads'}.sam")
        to_sam = [params.get("samtools_bin", "samtools"), "view", "-h", "-o", sam, inputs["bam"]]
        clique = [
            params.get("java_bin", "java"), f"-Xmx{params.get('memory', '4g')}",
            "-jar", params.get("jar", "clique-snv.jar"),
            "-m", params.get("method", "snv-illumina"),
            "-in", sam,
            "-outDir", outputs["dir"],
            "-threads", str(threads),
        ]
        return [
            f"mkdir -p {shlex.quote(outputs['dir'])}",
            shell_line(containerize(to_sam, params)),
            shell_line(containerize(clique, params)),
            f"rm -f {shlex.quote(sam)}",
        ]

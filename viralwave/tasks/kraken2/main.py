from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize, split_reads


@register_task("kraken2")
class Kraken2Task(Task):
    """
    Taxonomic classification of (trimmed) reads.

    Runs:
      kraken2 --db {db} --threads {threads} [--paired] --gzip-compressed \
          --report {sample}.kreport --output {sample}.kraken {reads...}
    """
    TYPE = "kraken2"

    INPUTS = {
        "reads": {"type": "tuple", "required": True, "desc": "Trimmed FASTQ(s)"},
    }
    OUTPUTS = {
        "report": {"type": "path", "desc": "Kraken report (per-taxon summary)"},
        "output": {"type": "path", "desc": "Per-read classification"},
    }
    DEFAULTS: Dict[str, Any] = {
        "db": None,
        "confidence": None,
        "kraken2_bin": "kraken2",
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        return {
            "report": self.path(f"{self.prefix}.kreport"),
            "output": self.path(f"{self.prefix}.kraken"),
        }

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        db = params.get("db")
        if not db:
            raise ValueError("[kraken2] PARAMS.db (classification database) is required")
        r1, r2 = split_reads(inputs["reads"])

        argv = [
            params.get("kraken2_bin", "kraken2"),
            "--db", db,
            "--threads", str(threads),
            "--report", outputs["report"],
            "--output", outputs["output"],
        ]
        if params.get("confidence") is not None:
            argv += ["--confidence", str(params["confidence"])]
        if r1.endswith(".gz"):
            argv.append("--gzip-compressed")
        if r2:
            argv += ["--paired", r1, r2]
        else:
            argv.append(r1)
        return [containerize(argv, params)]

from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize, split_reads


@register_task("krakentools.extract")
class KrakenExtractTask(Task):
    """
    Keep only the reads classified under the configured taxonomy IDs
    (KrakenTools extract_kraken_reads.py, children included).
    """
    TYPE = "krakentools.extract"

    INPUTS = {
        "reads":  {"type": "tuple", "required": True, "desc": "Trimmed FASTQ(s)"},
        "output": {"type": "path",  "required": True, "desc": "kraken2 per-read output"},
        "report": {"type": "path",  "required": True, "desc": "kraken2 report"},
    }
    OUTPUTS = {
        "reads": {"type": "tuple", "desc": "Extracted FASTQ(s)"},
    }
    DEFAULTS: Dict[str, Any] = {
        "taxids": ["2697049"],
        "include_children": True,
        "extract_bin": "extract_kraken_reads.py",
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        _, r2 = split_reads(self.inputs["reads"])
        if r2 is None:
            return {"reads": (self.path(f"{self.prefix}.extracted.fastq"),)}
        return {"reads": (self.path(f"{self.prefix}.extracted_R1.fastq"),
                          self.path(f"{self.prefix}.extracted_R2.fastq"))}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        taxids = params.get("taxids") or []
        if isinstance(taxids, str):
            taxids = taxids.split()
        if not taxids:
            raise ValueError("[krakentools.extract] PARAMS.taxids must name at least one taxon")
        r1, r2 = split_reads(inputs["reads"])
        out = outputs["reads"]

        argv = [
            params.get("extract_bin", "extract_kraken_reads.py"),
            "-k", inputs["output"],
            "-r", inputs["report"],
            "-s", r1,
        ]
        if r2:
            argv += ["-s2", r2]
        argv += ["-o", out[0]]
        if r2:
            argv += ["-o2", out[1]]
        argv += ["-t", *map(str, taxids)]
        if params.get("include_children"):
            argv.append("--include-children")
        argv.append("--fastq-output")
        return [containerize(argv, params)]

from __future__ import annotations
from typing import Dict, Any, List, Sequence, Optional
import os, shlex

from viralwave.tasks.task import Task
from viralwave.tasks.task_registry import register_task
from viralwave.tasks.utils import containerize


@register_task("report")
class ReportTask(Task):
    """
    Static report bundle over every sample of the run.

    The alignments, variant tables and reference are copied into
    ``{bundle}/data/`` and the configured bundler is run on the folder.
    Empty batches (no sample made it through) still produce a bundle.
    """
    TYPE = "report"

    INPUTS = {
        "bams":      {"type": "tuple", "required": False, "desc": "Sorted BAMs, ordered by sample"},
        "bais":      {"type": "tuple", "required": False, "desc": "BAM indexes"},
        "vcfs":      {"type": "tuple", "required": False, "desc": "Filtered variant calls"},
        "reference": {"type": "path",  "required": True,  "desc": "Reference FASTA"},
    }
    OUTPUTS = {
        "dir": {"type": "dir", "desc": "Report bundle"},
    }
    DEFAULTS: Dict[str, Any] = {
        "report_bin": "viral-report-bundle",
        "title": None,
        "image": None,
        "binds": None,
        "singularity_bin": "singularity",
    }

    def resolve_outputs(self) -> Dict[str, Any]:
        return {"dir": self.path("bundle")}

    def _build_cmd(self, *, inputs, outputs, params, threads, workdir,
                   sample_id: Optional[str] = None) -> List[Sequence[str] | str]:
        bundle = outputs["dir"]
        data = os.path.join(bundle, "data")
        artifacts = [
            *(inputs.get("bams") or []),
            *(inputs.get("bais") or []),
            *(inputs.get("vcfs") or []),
            inputs["reference"],
        ]
        lines: List[Sequence[str] | str] = [f"mkdir -p {shlex.quote(data)}"]
        lines += [f"cp -L {shlex.quote(str(a))} {shlex.quote(data)}/" for a in artifacts]

        argv = [params.get("report_bin", "viral-report-bundle"), "--data", data, "--out", bundle]
        if params.get("title"):
            argv += ["--title", params["title"]]
        lines.append(containerize(argv, params))
        return lines

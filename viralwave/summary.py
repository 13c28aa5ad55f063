# viralwave/summary.py
from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Dict

import pandas as pd
import pyaml

from viralwave.scheduler import InstanceState, RunSummary

log = logging.getLogger("viralwave.summary")

STATES = [s.value for s in InstanceState]
ALL_SAMPLES = "_all"


def instances_frame(summary: RunSummary) -> pd.DataFrame:
    """One row per instance, plus one ``join_miss`` row per dropped join."""
    rows = []
    for inst in summary.instances:
        rows.append({
            "task": inst.task,
            "type": inst.descriptor.task_type,
            "sample": inst.key if inst.key is not None else ALL_SAMPLES,
            "state": inst.state.value,
            "cause": inst.cause or "",
            "duration_sec": round(inst.duration, 3) if inst.duration is not None else None,
            "workdir": str(inst.workdir) if inst.workdir is not None else "",
        })
    for miss in summary.join_misses:
        rows.append({
            "task": miss.task,
            "type": "",
            "sample": miss.key,
            "state": "join_miss",
            "cause": str(miss.reason),
            "duration_sec": None,
            "workdir": "",
        })
    return pd.DataFrame(rows, columns=["task", "type", "sample", "state", "cause", "duration_sec", "workdir"])


def _counts(df: pd.DataFrame, by: str) -> pd.DataFrame:
    if df.empty:
        return pd.DataFrame(columns=STATES)
    table = pd.crosstab(df[by], df["state"])
    cols = STATES + [c for c in table.columns if c not in STATES]
    return table.reindex(columns=cols, fill_value=0)


def counts_by_task(summary: RunSummary) -> pd.DataFrame:
    return _counts(instances_frame(summary), "task")


def counts_by_sample(summary: RunSummary) -> pd.DataFrame:
    return _counts(instances_frame(summary), "sample")


def as_dict(summary: RunSummary, outfolder: Path | None = None) -> Dict[str, Any]:
    df = instances_frame(summary)
    totals = df["state"].value_counts().to_dict() if not df.empty else {}
    data: Dict[str, Any] = {
        "variant": summary.variant,
        "thread_budget": summary.budget,
        "peak_threads": summary.peak_threads,
        "cancelled": summary.cancelled,
        "totals": {k: int(v) for k, v in totals.items()},
        "per_task": {t: {k: int(v) for k, v in row.items() if v}
                     for t, row in counts_by_task(summary).iterrows()},
        "per_sample": {str(s): {k: int(v) for k, v in row.items() if v}
                       for s, row in counts_by_sample(summary).iterrows()},
        "failed": [{"instance": i.label, "cause": i.cause} for i in summary.failed],
        "join_misses": [str(m.reason) for m in summary.join_misses],
    }
    if outfolder is not None:
        data["outfolder"] = str(outfolder)
    return data


def write_summary(summary: RunSummary, outfolder: Path) -> Dict[str, Path]:
    """Write ``summary.tsv`` (per instance) and ``summary.yaml`` (counts)."""
    outfolder = Path(outfolder)
    outfolder.mkdir(parents=True, exist_ok=True)
    tsv = outfolder / "summary.tsv"
    yml = outfolder / "summary.yaml"
    instances_frame(summary).to_csv(tsv, sep="\t", index=False)
    yml.write_text(pyaml.dump(as_dict(summary, outfolder)))
    return {"tsv": tsv, "yaml": yml}


def log_summary(summary: RunSummary, outfolder: Path | None = None) -> None:
    table = counts_by_task(summary)
    if not table.empty:
        table = table.loc[:, (table != 0).any(axis=0)]
    log.info("run summary (%s):\n%s", summary.variant, table.to_string() if not table.empty else "no instances")
    for inst in summary.failed:
        log.error("[FAIL] %s: %s", inst.label, inst.cause)
    for miss in summary.join_misses:
        log.warning("join miss: %s", miss.reason)
    if outfolder is not None:
        log.info("results in %s", outfolder)

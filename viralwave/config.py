# viralwave/config.py
from __future__ import annotations
import copy
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from viralwave.errors import ConfigError

DEFAULT_THREADS = 4
DEFAULT_DEVINPUTS = 2
DEFAULT_RUNNAME = "run"
DEFAULT_REFERENCE = "MN908947.3"
DEFAULT_TAXIDS = ("2697049",)
PUBLISH_MODES = ("copy", "symlink")


class Mode(str, Enum):
    ONT = "ont"
    PE = "pe"


@dataclass(frozen=True)
class RunConfig:
    """Validated run flags and run-wide constants. Built once by ``validate``."""

    mode: Mode
    readsfolder: Path
    threads: int = DEFAULT_THREADS
    runname: str = DEFAULT_RUNNAME
    outfolder: Path = Path(f"{DEFAULT_RUNNAME}_out")
    workdir: Path = Path(f"{DEFAULT_RUNNAME}_out") / "work"
    dev: bool = False
    devinputs: int = DEFAULT_DEVINPUTS
    krakendb: Optional[Path] = None
    taxids: Tuple[str, ...] = DEFAULT_TAXIDS
    reference: str = DEFAULT_REFERENCE
    reference_name: str = DEFAULT_REFERENCE
    publish_mode: str = "copy"
    tools: Dict[str, Dict[str, Any]] = field(default_factory=dict, hash=False)

    @property
    def sample_limit(self) -> int:
        """Argument for ``take``: the dev input count, or -1 for every sample."""
        return self.devinputs if self.dev else -1

    def tool_params(self, task_type: str) -> Dict[str, Any]:
        return dict(self.tools.get(task_type, {}) or {})

    def as_flags(self) -> Dict[str, Any]:
        """Raw flags that ``validate`` turns back into an equal RunConfig."""
        return {
            "ont": self.mode is Mode.ONT,
            "pe": self.mode is Mode.PE,
            "readsfolder": str(self.readsfolder),
            "threads": self.threads,
            "runname": self.runname,
            "outfolder": str(self.outfolder),
            "workdir": str(self.workdir),
            "dev": self.dev,
            "devinputs": self.devinputs,
            "krakendb": str(self.krakendb) if self.krakendb is not None else None,
            "taxids": list(self.taxids),
            "reference": self.reference,
            "reference_name": self.reference_name,
            "publish_mode": self.publish_mode,
            "tools": copy.deepcopy(self.tools),
        }


# --------------------------
# field checks
# --------------------------
def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"--{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigError(f"--{name} must be an integer, got {value!r}") from None


def _mode(raw: Mapping[str, Any]) -> Mode:
    ont, pe = bool(raw.get("ont")), bool(raw.get("pe"))
    if ont == pe:
        which = "both" if ont else "neither"
        raise ConfigError(f"exactly one of --ont / --pe is required ({which} given)")
    return Mode.ONT if ont else Mode.PE


def _taxids(value: Any) -> Tuple[str, ...]:
    if value is None:
        return DEFAULT_TAXIDS
    if isinstance(value, (str, int)):
        value = str(value).replace(",", " ").split()
    ids = tuple(str(v).strip() for v in value if str(v).strip())
    if not ids:
        raise ConfigError("--taxids needs at least one taxonomy ID")
    return ids


def validate(raw_flags: Mapping[str, Any]) -> RunConfig:
    """
    Check raw flags and build the RunConfig. Raises ConfigError on the first
    problem. Only reads the filesystem (readsfolder / krakendb must exist).
    """
    raw = dict(raw_flags or {})
    mode = _mode(raw)

    threads = _as_int("threads", raw.get("threads") if raw.get("threads") is not None else DEFAULT_THREADS)
    if threads <= 0:
        raise ConfigError(f"--threads must be a positive integer, got {threads}")

    if not raw.get("readsfolder"):
        raise ConfigError("--readsfolder is required")
    readsfolder = Path(raw["readsfolder"])
    if not readsfolder.is_dir():
        raise ConfigError(f"--readsfolder {readsfolder} does not exist or is not a directory")

    runname = str(raw.get("runname") if raw.get("runname") is not None else DEFAULT_RUNNAME).strip()
    if not runname:
        raise ConfigError("--runname must not be empty")

    outfolder = Path(raw.get("outfolder") or f"{runname}_out")
    workdir = Path(raw.get("workdir") or outfolder / "work")

    devinputs = _as_int("devinputs", raw.get("devinputs") if raw.get("devinputs") is not None else DEFAULT_DEVINPUTS)

    krakendb = raw.get("krakendb")
    if krakendb:
        krakendb = Path(krakendb)
        if not krakendb.is_dir():
            raise ConfigError(f"--krakendb {krakendb} does not exist or is not a directory")
    else:
        krakendb = None

    publish_mode = str(raw.get("publish_mode") or "copy")
    if publish_mode not in PUBLISH_MODES:
        raise ConfigError(f"--publish-mode must be one of {', '.join(PUBLISH_MODES)}, got {publish_mode!r}")

    reference = str(raw.get("reference") or DEFAULT_REFERENCE)
    tools = raw.get("tools") or {}
    if not isinstance(tools, Mapping):
        raise ConfigError("TOOLS must be a mapping of task type to parameters")

    return RunConfig(
        mode=mode,
        readsfolder=readsfolder,
        threads=threads,
        runname=runname,
        outfolder=outfolder,
        workdir=workdir,
        dev=bool(raw.get("dev")),
        devinputs=devinputs,
        krakendb=krakendb,
        taxids=_taxids(raw.get("taxids")),
        reference=reference,
        reference_name=str(raw.get("reference_name") or reference),
        publish_mode=publish_mode,
        tools={str(k): dict(v or {}) for k, v in tools.items()},
    )


# --------------------------
# optional YAML file
# --------------------------
def load_config_file(path: str | Path) -> Tuple[Dict[str, Any], Dict[str, Dict[str, Any]]]:
    """
    Read ``PARAMS`` (flag defaults) and ``TOOLS`` (per task type params)
    from a YAML file::

        PARAMS:
          threads: 8
          krakendb: /db/kraken2
        TOOLS:
          fastp:
            length_required: 75
          cojac:
            vocdir: /ref/voc
    """
    p = Path(path)
    if not p.is_file():
        raise ConfigError(f"config file {p} not found")
    try:
        cfg = yaml.safe_load(p.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"config file {p} is not valid YAML: {e}") from e
    if not isinstance(cfg, Mapping):
        raise ConfigError(f"config file {p} must hold a mapping")

    params = cfg.get("PARAMS") or {}
    tools = cfg.get("TOOLS") or {}
    if not isinstance(params, Mapping) or not isinstance(tools, Mapping):
        raise ConfigError(f"config file {p}: PARAMS and TOOLS must be mappings")
    params = {str(k).replace("-", "_"): v for k, v in params.items()}
    for name, tool in tools.items():
        if tool is not None and not isinstance(tool, Mapping):
            raise ConfigError(f"config file {p}: TOOLS.{name} must be a mapping")
    return params, {str(k): dict(v or {}) for k, v in tools.items()}

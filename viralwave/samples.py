# viralwave/samples.py
from __future__ import annotations
import logging
import re
from pathlib import Path
from typing import Dict, List, Tuple

from viralwave.channel import Channel, Stream
from viralwave.config import Mode, RunConfig
from viralwave.errors import SampleKeyError

log = logging.getLogger("viralwave.samples")

FASTQ_SUFFIXES = (".fastq.gz", ".fq.gz")

# S1_L001_R1_001.fastq.gz, S1_R2.fq.gz
_MATE_R = re.compile(r"_R([12])(?=[_.])")
# S1_1.fastq.gz
_MATE_NUM = re.compile(r"_([12])(?=\.(?:fastq|fq)\.gz$)")


def sample_key(filename: str | Path) -> str:
    """
    Sample key of a reads file: the file name up to the first underscore.
    ``S1_L001_R1.fastq.gz`` -> ``S1``. Names without an underscore or with an
    empty prefix raise SampleKeyError.
    """
    name = Path(filename).name
    if "_" not in name:
        raise SampleKeyError(f"cannot derive a sample key from '{name}': expected '<key>_...'")
    key = name.split("_", 1)[0]
    if not key:
        raise SampleKeyError(f"cannot derive a sample key from '{name}': empty prefix")
    return key


def is_fastq(path: Path) -> bool:
    return path.is_file() and path.name.endswith(FASTQ_SUFFIXES)


def _mate(name: str) -> Tuple[str, int] | None:
    """(name with the mate token blanked, mate number) or None."""
    for rx in (_MATE_R, _MATE_NUM):
        hits = list(rx.finditer(name))
        if hits:
            m = hits[-1]
            stem = name[:m.start()] + name[m.start():m.end()].replace(m.group(1), "#") + name[m.end():]
            return stem, int(m.group(1))
    return None


def _check_unique(pairs: List[Tuple[str, object]]) -> None:
    seen: Dict[str, object] = {}
    for key, value in pairs:
        if key in seen:
            raise SampleKeyError(f"sample key '{key}' is shared by {seen[key]} and {value}")
        seen[key] = value


def discover_paired(readsfolder: Path) -> List[Tuple[str, Tuple[str, str]]]:
    mates: Dict[str, Dict[int, Path]] = {}
    for f in sorted(p for p in Path(readsfolder).iterdir() if is_fastq(p)):
        hit = _mate(f.name)
        if hit is None:
            log.warning("%s has no _R1/_R2 or _1/_2 mate tag, ignored", f.name)
            continue
        stem, mate = hit
        mates.setdefault(stem, {})[mate] = f

    pairs = []
    for stem in sorted(mates):
        found = mates[stem]
        if set(found) != {1, 2}:
            only = next(iter(found.values()))
            log.warning("%s has no mate, dropped", only.name)
            continue
        r1, r2 = found[1], found[2]
        pairs.append((r1.name, sample_key(r1.name), (str(r1), str(r2))))

    pairs.sort(key=lambda t: t[0])
    out = [(key, reads) for _, key, reads in pairs]
    _check_unique(out)
    return out


def discover_single(readsfolder: Path) -> List[Tuple[str, Tuple[str]]]:
    out = []
    for f in sorted(p for p in Path(readsfolder).iterdir() if is_fastq(p)):
        out.append((sample_key(f.name), (str(f),)))
    _check_unique(out)
    return out


def discover_samples(readsfolder: str | Path, mode: Mode) -> List[Tuple[str, tuple]]:
    """
    ``(key, reads)`` for every sample in *readsfolder*, in lexicographic
    file name order. ``reads`` is ``(r1, r2)`` in paired mode and ``(path,)``
    for long reads.
    """
    folder = Path(readsfolder).absolute()
    samples = discover_paired(folder) if Mode(mode) is Mode.PE else discover_single(folder)
    log.info("found %d sample(s) in %s", len(samples), folder)
    return samples


def reads_channel(config: RunConfig) -> Stream:
    """Keyed reads channel for the run, truncated to ``devinputs`` in dev mode."""
    samples = discover_samples(config.readsfolder, config.mode)
    if config.dev:
        log.info("dev mode: keeping the first %d sample(s)", config.devinputs)
    return Channel.from_pairs(samples, name="reads").take(config.sample_limit)

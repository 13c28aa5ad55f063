# viralwave/publisher.py
from __future__ import annotations
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Iterable, List

from viralwave.channel import Keyed
from viralwave.graph import Graph

log = logging.getLogger("viralwave.publisher")

SUBFOLDERS = (
    "reference", "assembly", "alignments", "variants", "filtered",
    "stats", "haplotypes", "cooccurrence", "report",
)


def _paths(value: Any) -> Iterable[Path]:
    if isinstance(value, Keyed):
        value = value.value
    if isinstance(value, (list, tuple)):
        for v in value:
            yield from _paths(v)
    elif isinstance(value, (str, Path)):
        yield Path(value)


def _place(src: Path, dest: Path, mode: str) -> None:
    if dest.is_symlink() or dest.is_file():
        dest.unlink()
    elif dest.is_dir():
        shutil.rmtree(dest)
    if mode == "symlink":
        os.symlink(src.absolute(), dest)
    elif src.is_dir():
        shutil.copytree(src, dest, symlinks=False)
    else:
        shutil.copy2(src, dest)


def publish(graph: Graph, config) -> List[Path]:
    """
    Copy (or symlink) every published output port into
    ``<outfolder>/<subfolder>/``. Only closed channels are read.
    Sources that do not exist are logged and skipped.
    """
    outfolder = Path(config.outfolder)
    mode = getattr(config, "publish_mode", "copy")
    published: List[Path] = []

    for node in graph.nodes.values():
        for port, sub in node.descriptor.publish:
            ch = node.outputs.get(port)
            if ch is None or not ch.closed:
                log.warning("%s.%s: output channel not closed, nothing published", node.name, port)
                continue
            target = outfolder / sub
            for rec in ch.records:
                for src in _paths(rec):
                    if not src.exists():
                        log.warning("%s.%s: %s does not exist, not published", node.name, port, src)
                        continue
                    target.mkdir(parents=True, exist_ok=True)
                    dest = target / src.name
                    _place(src, dest, mode)
                    published.append(dest)
                    log.debug("published %s -> %s", src, dest)

    log.info("published %d file(s) into %s (%s)", len(published), outfolder, mode)
    return published

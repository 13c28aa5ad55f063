# viralwave/cli.py
from __future__ import annotations
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pyaml

from viralwave import __version__
from viralwave.config import PUBLISH_MODES, RunConfig, load_config_file, validate
from viralwave.errors import ConfigError, GraphError, TaskLoadError
from viralwave.executor import BashExecutor
from viralwave.pipeline import build_pipeline
from viralwave.publisher import publish
from viralwave.samples import reads_channel
from viralwave.scheduler import Scheduler
from viralwave.summary import log_summary, write_summary
from viralwave.utils.log import setup_logging

log = logging.getLogger("viralwave.cli")

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_FAILED = 3
EXIT_GRAPH = 4
EXIT_CANCELLED = 130

FLAG_NAMES = (
    "readsfolder", "threads", "runname", "outfolder", "workdir", "dev", "devinputs",
    "ont", "pe", "krakendb", "taxids", "reference", "publish_mode",
)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        "viralwave",
        description="Viral genome sequencing pipeline (paired-end or ONT long reads).",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    mode = ap.add_argument_group("mode (exactly one)")
    mode.add_argument("--ont", action="store_true", default=None, help="long-read (Oxford Nanopore) input")
    mode.add_argument("--pe", action="store_true", default=None, help="paired-end short-read input")

    io = ap.add_argument_group("input / output")
    io.add_argument("--readsfolder", help="folder with FASTQ(.gz) files")
    io.add_argument("--runname", help="run name (default: run)")
    io.add_argument("--outfolder", help="output folder (default: <runname>_out)")
    io.add_argument("--workdir", help="work folder (default: <outfolder>/work)")
    io.add_argument("--publish-mode", dest="publish_mode", choices=PUBLISH_MODES,
                    help="copy results or symlink them (default: copy)")

    run = ap.add_argument_group("run")
    run.add_argument("--threads", help="thread budget for the whole run (default: 4)")
    run.add_argument("--dev", action="store_true", default=None, help="only process the first --devinputs samples")
    run.add_argument("--devinputs", help="sample count in dev mode (default: 2)")
    run.add_argument("--config", help="YAML file with PARAMS and TOOLS sections")
    run.add_argument("--plan", action="store_true", help="print the task graph and exit")
    run.add_argument("-v", "--verbose", action="store_true", help="debug logging")

    tools = ap.add_argument_group("tools")
    tools.add_argument("--krakendb", help="kraken2 database folder (enables classification)")
    tools.add_argument("--taxids", nargs="+", help="taxonomy IDs to keep (default: 2697049)")
    tools.add_argument("--reference", help="reference accession (default: MN908947.3)")
    return ap


def collect_flags(args: argparse.Namespace) -> Dict[str, Any]:
    """Config file PARAMS first, command line on top."""
    flags: Dict[str, Any] = {}
    if args.config:
        params, tools = load_config_file(args.config)
        flags.update(params)
        flags["tools"] = tools
    for name in FLAG_NAMES:
        value = getattr(args, name, None)
        if value is not None:
            flags[name] = value
    return flags


def _install_signal_handlers(scheduler: Scheduler) -> Dict[int, Any]:
    def handler(signum, frame):
        log.warning("received %s, cancelling run", signal.Signals(signum).name)
        scheduler.cancel()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handler)
    return previous


def run(config: RunConfig, graph, *, set_x: bool = False) -> int:
    executor = BashExecutor(set_x=set_x)
    scheduler = Scheduler(graph, executor, workdir=config.workdir)
    previous = _install_signal_handlers(scheduler)
    try:
        summary = scheduler.run()
    finally:
        for sig, h in previous.items():
            signal.signal(sig, h)

    outfolder = Path(config.outfolder)
    executor.save_trace(outfolder / "trace.jsonl")
    write_summary(summary, outfolder)
    if summary.cancelled:
        log_summary(summary, outfolder)
        log.error("run cancelled")
        return EXIT_CANCELLED

    publish(graph, config)
    log_summary(summary, outfolder)
    if summary.failed:
        log.error("%d instance(s) failed", len(summary.failed))
        return EXIT_FAILED
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(level)

    try:
        config = validate(collect_flags(args))
    except ConfigError as e:
        log.error("configuration error: %s", e)
        return EXIT_CONFIG

    if not args.plan:
        setup_logging(level, log_file=Path(config.outfolder) / "viralwave.log")
    log.info("viralwave %s | run %s | mode %s | threads %d", __version__, config.runname,
             config.mode.value, config.threads)

    try:
        graph = build_pipeline(config, reads_channel(config))
    except ConfigError as e:
        log.error("configuration error: %s", e)
        return EXIT_CONFIG
    except (GraphError, TaskLoadError) as e:
        log.error("graph error: %s", e)
        return EXIT_GRAPH

    if args.plan:
        sys.stdout.write(pyaml.dump(graph.describe()))
        return EXIT_OK
    return run(config, graph, set_x=args.verbose)

# viralwave/pipeline.py
from __future__ import annotations
import logging
from typing import Any, Callable, Dict, List, Tuple

from viralwave.channel import Channel, Stream
from viralwave.config import Mode, RunConfig
from viralwave.descriptor import TaskDescriptor
from viralwave.errors import GraphError
from viralwave.graph import Bind, Graph, build
from viralwave.publisher import SUBFOLDERS

log = logging.getLogger("viralwave.pipeline")

Template = Tuple[List[TaskDescriptor], Dict[str, Dict[str, Bind]]]

# thread requests before clamping to the run budget
THREADS: Dict[str, int] = {
    "efetch": 1,
    "samtools.faidx": 1,
    "fastp": 4,
    "kraken2": 8,
    "krakentools.extract": 1,
    "flye": 8,
    "minimap2": 4,
    "samtools.sort": 2,
    "lofreq.call": 4,
    "lofreq.filter": 1,
    "bcftools.stats": 1,
    "cliquesnv": 4,
    "cojac": 1,
    "report": 1,
}


def _no_vocdir(params: Dict[str, Any]) -> Callable[[Dict[str, Any]], bool]:
    def skip(inputs: Dict[str, Any]) -> bool:
        return not params.get("vocdir")
    return skip


class _Wiring:
    """Collects descriptors and bindings for one template."""

    def __init__(self, config: RunConfig):
        self.config = config
        self.descriptors: List[TaskDescriptor] = []
        self.bindings: Dict[str, Dict[str, Bind]] = {}

    def add(self, name: str, task_type: str, inputs: Dict[str, Bind], *,
            params: Dict[str, Any] | None = None, publish=(), **kwargs) -> str:
        unknown = [folder for _, folder in publish if folder not in SUBFOLDERS]
        if unknown:
            raise GraphError(f"{name}: unknown publish folder(s) {', '.join(unknown)}")
        merged = self.config.tool_params(task_type)
        threads = int(merged.pop("threads", THREADS.get(task_type, 1)))
        merged.update(params or {})
        self.descriptors.append(TaskDescriptor.from_task(
            name, task_type, threads=threads, params=merged, publish=tuple(publish), **kwargs
        ))
        self.bindings[name] = inputs
        return name

    def result(self) -> Template:
        return self.descriptors, self.bindings


def _reference(w: _Wiring) -> str:
    cfg = w.config
    accession = Channel.of(cfg.reference, name="accession")
    w.add("efetch", "efetch", {"accession": Bind.source(accession)},
          params={"reference_name": cfg.reference_name})
    return w.add("samtools.faidx", "samtools.faidx", {"fasta": Bind.output("efetch", "fasta")},
                 publish=[("fasta", "reference"), ("fai", "reference")])


def _classify(w: _Wiring, trimmed: Bind) -> Bind:
    """kraken2 + read extraction when a database is configured."""
    cfg = w.config
    if cfg.krakendb is None:
        log.info("no --krakendb: classification and read extraction are left out")
        return trimmed
    w.add("kraken2", "kraken2", {"reads": trimmed}, params={"db": str(cfg.krakendb)})
    w.add("krakentools.extract", "krakentools.extract", {
        "reads": trimmed,
        "output": Bind.output("kraken2", "output"),
        "report": Bind.output("kraken2", "report"),
    }, params={"taxids": list(cfg.taxids)})
    return Bind.output("krakentools.extract", "reads")


def _align_and_call(w: _Wiring, reads: Bind, ref: str, *, preset: str, clique_method: str) -> None:
    reference = Bind.output(ref, "fasta")
    w.add("minimap2", "minimap2", {"reads": reads, "reference": reference}, params={"preset": preset})
    w.add("samtools.sort", "samtools.sort", {"bam": Bind.output("minimap2", "bam")},
          publish=[("bam", "alignments"), ("bai", "alignments")])
    w.add("lofreq.call", "lofreq.call", {
        "bam": Bind.output("samtools.sort", "bam"),
        "bai": Bind.output("samtools.sort", "bai"),
        "reference": reference,
    }, publish=[("vcf", "variants")])
    w.add("lofreq.filter", "lofreq.filter", {"vcf": Bind.output("lofreq.call", "vcf")},
          publish=[("vcf", "filtered")])
    w.add("bcftools.stats", "bcftools.stats", {"vcf": Bind.output("lofreq.filter", "vcf")},
          publish=[("stats", "stats")])
    w.add("cliquesnv", "cliquesnv", {"bam": Bind.output("samtools.sort", "bam")},
          params={"method": clique_method}, publish=[("dir", "haplotypes")])


def _report(w: _Wiring, ref: str) -> None:
    w.add("report", "report", {
        "bams": Bind.output("samtools.sort", "bam", collect=True),
        "bais": Bind.output("samtools.sort", "bai", collect=True),
        "vcfs": Bind.output("lofreq.filter", "vcf", collect=True),
        "reference": Bind.output(ref, "fasta"),
    }, params={"title": w.config.runname}, publish=[("dir", "report")])


def pe_template(config: RunConfig, reads: Stream) -> Template:
    """Paired-end short reads: trim, classify, align (sr), call, haplotypes, co-occurrence."""
    w = _Wiring(config)
    ref = _reference(w)
    w.add("fastp", "fastp", {"reads": Bind.source(reads)})
    extracted = _classify(w, Bind.output("fastp", "reads"))
    _align_and_call(w, extracted, ref, preset="sr", clique_method="snv-illumina")
    w.add("cojac", "cojac", {
        "bam": Bind.output("samtools.sort", "bam"),
        "bai": Bind.output("samtools.sort", "bai"),
    }, skip_when=_no_vocdir(config.tool_params("cojac")), publish=[("json", "cooccurrence")])
    _report(w, ref)
    return w.result()


def ont_template(config: RunConfig, reads: Stream) -> Template:
    """Long reads: trim, classify, assemble, align (map-ont), call, haplotypes."""
    w = _Wiring(config)
    ref = _reference(w)
    w.add("fastp", "fastp", {"reads": Bind.source(reads)})
    extracted = _classify(w, Bind.output("fastp", "reads"))
    w.add("flye", "flye", {"reads": extracted}, publish=[("dir", "assembly")])
    _align_and_call(w, extracted, ref, preset="map-ont", clique_method="snv-pacbio")
    _report(w, ref)
    return w.result()


TEMPLATES: Dict[Mode, Callable[[RunConfig, Stream], Template]] = {
    Mode.PE: pe_template,
    Mode.ONT: ont_template,
}


def build_pipeline(config: RunConfig, reads: Stream) -> Graph:
    """Pick the template for ``config.mode`` once and build its graph."""
    descriptors, bindings = TEMPLATES[config.mode](config, reads)
    graph = build(descriptors, bindings, config)
    log.info("built %s pipeline: %d task(s), %d edge(s)", graph.variant, len(graph.nodes), len(graph.edges))
    return graph

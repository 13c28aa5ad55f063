from types import SimpleNamespace

import pytest

from viralwave.channel import Channel
from viralwave.descriptor import Port, PortKind, TaskDescriptor
from viralwave.errors import CycleError, GraphError, UnboundInputError
from viralwave.graph import Bind, Edge, build
from viralwave.pipeline import _Wiring, build_pipeline
from viralwave.publisher import SUBFOLDERS

CFG = SimpleNamespace(threads=4, mode="pe")


def _d(name, inputs=("x",), outputs=("y",), threads=1, **kw):
    return TaskDescriptor(name, "noop", inputs=inputs, outputs=outputs, threads=threads, **kw)


def _chain():
    reads = Channel.from_pairs([("S1", "a"), ("S2", "b")], name="reads")
    ref = Channel.of("ref.fa", name="ref")
    descs = [
        _d("trim"),
        _d("align", inputs=("reads", "ref")),
        _d("report", inputs=("all",)),
    ]
    bindings = {
        "trim": {"x": Bind.source(reads)},
        "align": {"reads": Bind.output("trim", "y"), "ref": Bind.source(ref)},
        "report": {"all": Bind.output("align", "y", collect=True)},
    }
    return descs, bindings


def test_build_order_edges_and_keying():
    g = build(*_chain(), CFG)
    assert g.order == ("trim", "align", "report")
    assert g.edges == (
        Edge("trim", "y", "align", "reads"),
        Edge("align", "y", "report", "all", True),
    )
    assert g.node("trim").keyed and g.node("align").keyed
    assert not g.node("report").keyed
    assert g.channel("align", "y").keyed
    assert g.variant == "pe"


def test_build_is_pure():
    descs, bindings = _chain()
    assert build(descs, bindings, CFG) == build(descs, bindings, CFG)
    assert build(descs, bindings, CFG).structure() == build(*_chain(), CFG).structure()


def test_declaration_order_does_not_hide_dependencies():
    descs, bindings = _chain()
    g = build(list(reversed(descs)), bindings, CFG)
    assert g.order == ("trim", "align", "report")


def test_each_output_port_gets_its_own_channel():
    g = build(*_chain(), CFG)
    a = g.channel("trim", "y")
    b = build(*_chain(), CFG).channel("trim", "y")
    assert a is not b
    with pytest.raises(GraphError):
        g.channel("trim", "nope")


def test_threads_clamped_to_budget():
    reads = Channel.of(1)
    g = build([_d("big", threads=16)], {"big": {"x": Bind.source(reads)}}, SimpleNamespace(threads=3, mode="ont"))
    assert g.node("big").threads == 3
    assert g.node("big").descriptor.threads == 16


def test_unbound_input():
    descs, bindings = _chain()
    del bindings["align"]["ref"]
    with pytest.raises(UnboundInputError) as e:
        build(descs, bindings, CFG)
    assert (e.value.task, e.value.port) == ("align", "ref")


def test_duplicate_descriptor():
    descs, bindings = _chain()
    with pytest.raises(GraphError, match="duplicate"):
        build(descs + [_d("trim")], bindings, CFG)


@pytest.mark.parametrize("patch,msg", [
    ({"ghost": {"x": Bind.source(Channel.of(1))}}, "unknown task 'ghost'"),
    ({"trim": {"nope": Bind.source(Channel.of(1))}}, "no input 'nope'"),
    ({"align": {"reads": Bind.output("ghost", "y"), "ref": Bind.source(Channel.of(1))}}, "unknown task 'ghost'"),
    ({"align": {"reads": Bind.output("trim", "zz"), "ref": Bind.source(Channel.of(1))}}, "trim.zz"),
])
def test_unknown_task_or_port(patch, msg):
    descs, bindings = _chain()
    for task, ports in patch.items():
        bindings.setdefault(task, {}).update(ports)
    with pytest.raises(GraphError, match=msg):
        build(descs, bindings, CFG)


def test_cycle():
    descs = [_d("a", inputs=("x", "back")), _d("b"), _d("c")]
    bindings = {
        "a": {"x": Bind.source(Channel.of(1)), "back": Bind.output("c", "y")},
        "b": {"x": Bind.output("a", "y")},
        "c": {"x": Bind.output("b", "y")},
    }
    with pytest.raises(CycleError) as e:
        build(descs, bindings, CFG)
    assert e.value.nodes == ["a", "b", "c"]


def test_cycle_error_is_graph_error():
    assert issubclass(CycleError, GraphError)


def test_descriptor_equality_ignores_predicates():
    a = _d("t", skip_when=lambda i: True)
    b = _d("t", skip_when=lambda i: False)
    assert a == b
    assert a != _d("t", threads=2)
    assert a.inputs == (Port("x", PortKind.FILE),)


def test_descriptor_rejects_zero_threads():
    with pytest.raises(ValueError):
        _d("t", threads=0)


def test_describe():
    plan = build(*_chain(), CFG).describe()
    assert plan["variant"] == "pe"
    assert [t["name"] for t in plan["tasks"]] == ["trim", "align", "report"]
    assert plan["tasks"][1]["inputs"] == {"reads": "trim.y", "ref": "source:ref"}
    assert "align.y -> report.all (collect)" in plan["edges"]


# ------------------------------
# pipeline variants
# ------------------------------
def _reads():
    return Channel.from_pairs([("S1", ("a_R1", "a_R2"))], name="reads")


def test_pe_pipeline_shape(make_fastqs, make_config, tmp_path):
    db = tmp_path / "db"
    db.mkdir()
    cfg = make_config(make_fastqs([]), krakendb=str(db))
    g = build_pipeline(cfg, _reads())
    assert g.variant == "pe"
    assert "cojac" in g.nodes and "flye" not in g.nodes
    assert g.node("minimap2").descriptor.params["preset"] == "sr"
    assert g.node("kraken2").descriptor.params["db"] == str(db)
    assert g.node("kraken2").threads == 4
    assert Edge("kraken2", "report", "krakentools.extract", "report") in g.edges
    assert not g.node("report").keyed
    assert g.order[0] == "efetch"


def test_ont_pipeline_shape(make_fastqs, make_config):
    cfg = make_config(make_fastqs([]), pe=False, ont=True)
    g = build_pipeline(cfg, _reads())
    assert g.variant == "ont"
    assert "flye" in g.nodes and "cojac" not in g.nodes
    assert "kraken2" not in g.nodes
    assert g.node("minimap2").descriptor.params["preset"] == "map-ont"
    assert g.node("cliquesnv").descriptor.params["method"] == "snv-pacbio"
    assert Edge("fastp", "reads", "flye", "reads") in g.edges


def test_pipeline_build_is_pure(make_fastqs, make_config):
    cfg = make_config(make_fastqs([]))
    reads = _reads()
    assert build_pipeline(cfg, reads) == build_pipeline(cfg, reads)


def test_tool_threads_override(make_fastqs, make_config):
    cfg = make_config(make_fastqs([]), threads=16, tools={"minimap2": {"threads": 12, "preset": "x"}})
    g = build_pipeline(cfg, _reads())
    assert g.node("minimap2").threads == 12
    assert g.node("minimap2").descriptor.params["preset"] == "sr"


@pytest.mark.parametrize("mode", ["pe", "ont"])
def test_pipeline_publishes_into_known_folders(make_fastqs, make_config, mode):
    flags = {"pe": False, "ont": True} if mode == "ont" else {}
    g = build_pipeline(make_config(make_fastqs([]), **flags), _reads())
    folders = {folder for node in g.nodes.values() for _, folder in node.descriptor.publish}
    assert folders and folders <= set(SUBFOLDERS)


def test_unknown_publish_folder(make_fastqs, make_config):
    wiring = _Wiring(make_config(make_fastqs([])))
    with pytest.raises(GraphError, match="unknown publish folder"):
        wiring.add("efetch", "efetch", {}, publish=[("fasta", "refs")])

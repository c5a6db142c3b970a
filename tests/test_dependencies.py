import itertools

import pytest

from hotreload.dependencies import DEFAULT_DEPENDENCIES, DependencyGraph, load_dependencies, restart_order

from conftest import THREE_NODE_GRAPH


def test_documented_example_order():
    assert restart_order(THREE_NODE_GRAPH, ["clash", "nginx", "web-ui"]) == ["web-ui", "nginx", "clash"]


def test_only_requested_dependencies_are_pulled_in():
    assert restart_order(THREE_NODE_GRAPH, ["clash"]) == ["clash"]
    assert restart_order(THREE_NODE_GRAPH, ["clash", "web-ui"]) == ["web-ui", "clash"]


def test_every_requested_dependency_precedes_its_dependent():
    graph = {
        "api": ["db", "cache"],
        "worker": ["db", "queue"],
        "gateway": ["api", "auth"],
        "auth": ["db"],
        "db": [],
        "cache": [],
        "queue": [],
    }
    names = list(graph)
    for size in range(1, len(names) + 1):
        for requested in itertools.permutations(names, size):
            order = restart_order(graph, requested)
            assert sorted(order) == sorted(requested)
            for svc in requested:
                for dep in graph[svc]:
                    if dep in requested:
                        assert order.index(dep) < order.index(svc)


def test_unknown_services_and_duplicates():
    assert restart_order(THREE_NODE_GRAPH, ["ghost", "web-ui", "ghost"]) == ["ghost", "web-ui"]


def test_cycle_terminates():
    order = restart_order({"a": ["b"], "b": ["a"]}, ["a", "b"])
    assert sorted(order) == ["a", "b"]


def test_graph_defaults_and_replace():
    g = DependencyGraph()
    assert g.snapshot() == DEFAULT_DEPENDENCIES
    assert "config-watcher" in g

    before = g.snapshot()
    g.replace({"a": ["b"], "b": []})
    assert g.services() == ["a", "b"]
    assert g.restart_order(["a", "b"]) == ["b", "a"]
    # Snapshots are copies, not views.
    assert before == DEFAULT_DEPENDENCIES
    snap = g.snapshot()
    snap["a"].append("zzz")
    assert g.snapshot()["a"] == ["b"]


def test_load_dependencies_from_yaml(tmp_path):
    f = tmp_path / "deps.yaml"
    f.write_text("clash:\n  - nginx\nnginx:\nweb-ui: []\n", encoding="utf-8")
    assert load_dependencies(f) == {"clash": ["nginx"], "nginx": [], "web-ui": []}


@pytest.mark.parametrize("text", ["- a\n- b\n", "clash: nginx\n", "clash:\n  - 1\n"])
def test_load_dependencies_rejects_bad_shapes(tmp_path, text):
    f = tmp_path / "deps.yaml"
    f.write_text(text, encoding="utf-8")
    with pytest.raises(ValueError):
        load_dependencies(f)

import json
from pathlib import Path

import pytest

from station.graph import GraphError, load_graph, load_graphs, read_graphs_payload
from station.schema import normalize_nodes, path, validate_graph, validate_graphs


def simple_graph(**overrides) -> dict:
    graph = {
        "startNodeId": "intro",
        "nodes": {
            "intro": {
                "speaker": "Maya",
                "content": [{"text": "Hi.", "variation_id": "intro_1"}],
                "choices": [
                    {
                        "choiceId": "wave",
                        "text": "Wave back",
                        "nextNodeId": "end",
                        "pattern": "helping",
                        "visibleCondition": {"hasKnowledgeFlags": ["met"]},
                        "consequence": {"characterId": "maya", "trustChange": 1},
                    }
                ],
                "onEnter": [{"addGlobalFlags": ["visited_maya"]}],
            },
            "end": {"speaker": "Maya", "text": "Bye.", "choices": [], "tags": ["terminal"]},
        },
    }
    graph.update(overrides)
    return graph


def test_load_graph_builds_typed_records() -> None:
    graph = load_graph(simple_graph())
    intro = graph.nodes["intro"]
    assert graph.start_node_id == "intro"
    assert intro.text == "Hi."
    assert intro.on_enter[0].add_global_flags == ("visited_maya",)
    choice = intro.choices[0]
    assert choice.next_node_id == "end"
    assert choice.visible_condition.has_knowledge_flags == ("met",)
    assert choice.consequence.trust_change == 1
    assert graph.nodes["end"].is_boundary()
    assert not intro.is_boundary()


def test_load_graph_accepts_node_lists() -> None:
    graph = load_graph(
        {
            "start_node_id": "a",
            "nodes": [
                {"nodeId": "a", "choices": [{"choice_id": "go", "next_node_id": "b"}]},
                {"nodeId": "b", "metadata": {"sessionBoundary": True}},
            ],
        }
    )
    assert set(graph.nodes) == {"a", "b"}
    assert graph.nodes["a"].choices[0].choice_id == "go"
    assert graph.nodes["b"].is_boundary()


@pytest.mark.parametrize(
    ("payload", "match"),
    [
        ({"startNodeId": "a", "nodes": "nope"}, "nodes"),
        ({"startNodeId": "a", "nodes": [{"speaker": "No id"}]}, "missing"),
        ({"startNodeId": "a", "nodes": [{"nodeId": "a"}, {"nodeId": "a"}]}, "duplicate"),
        ({"startNodeId": "a", "nodes": {"a": "not a node"}}, "must be an object"),
        (
            {"startNodeId": "a", "nodes": {"a": {"choices": [{"choiceId": "x", "nextNodeId": "a",
                                                              "consequence": {"trustChange": "lots"}}]}}},
            "malformed state change",
        ),
        ({"startNodeId": "a", "nodes": {"a": {"choices": [], "tags": 5}}}, "'tags' must be a list"),
        (
            {"startNodeId": "a", "nodes": {"a": {"choices": [{"choiceId": "x", "nextNodeId": "a", "skills": 3}]}}},
            "'skills' must be a list",
        ),
        (
            {"startNodeId": "a", "nodes": {"a": {"choices": [{"choiceId": "x", "nextNodeId": "a",
                                                              "consequence": {"trustChange": 2.7}}]}}},
            "whole number",
        ),
    ],
)
def test_load_graph_rejects_malformed_shapes(payload: dict, match: str) -> None:
    with pytest.raises(GraphError, match=match) as excinfo:
        load_graph(payload)
    assert isinstance(excinfo.value, ValueError)
    assert str(excinfo.value).startswith("Invalid dialogue graph:\n- ")


def test_missing_start_is_not_a_load_error() -> None:
    graph = load_graph(simple_graph(startNodeId="nowhere"))
    assert graph.get(graph.start_node_id) is None


def test_load_graphs_reads_wrapped_file(tmp_path: Path) -> None:
    path_ = tmp_path / "graphs.json"
    path_.write_text(json.dumps({"graphs": {"maya": simple_graph(), "samuel": simple_graph()}}))
    graphs = load_graphs(path_)
    assert list(graphs) == ["maya", "samuel"]


def test_load_graphs_reports_invalid_json(tmp_path: Path) -> None:
    path_ = tmp_path / "graphs.json"
    path_.write_text("{not json")
    with pytest.raises(GraphError, match="invalid JSON"):
        load_graphs(path_)


def test_load_graphs_reports_undecodable_bytes(tmp_path: Path) -> None:
    path_ = tmp_path / "graphs.json"
    path_.write_bytes(b'{"maya": {"startNodeId": "\xff", "nodes": {}}}')
    with pytest.raises(GraphError, match="not valid UTF-8"):
        load_graphs(path_)


def test_bundled_content_loads_and_validates() -> None:
    bundled = Path(__file__).resolve().parents[1] / "content" / "dialogue_graphs.json"
    assert validate_graphs(read_graphs_payload(bundled)) == []
    assert sorted(load_graphs(bundled)) == ["maya", "samuel"]


def test_normalize_nodes_rejects_duplicate_list_ids() -> None:
    _, errors = normalize_nodes([{"nodeId": "dup"}, {"nodeId": "dup"}])
    assert any("duplicate node IDs" in error for error in errors)


def test_path_quotes_non_identifiers() -> None:
    assert path("graphs", "maya", "nodes", "a b", "choices", 0, "nextNodeId") == (
        'graphs.maya.nodes["a b"].choices[0].nextNodeId'
    )


def test_validate_graph_accepts_clean_graph() -> None:
    assert validate_graph("maya", simple_graph()) == []


def test_validate_graph_reports_content_errors() -> None:
    graph = simple_graph()
    choice = graph["nodes"]["intro"]["choices"][0]
    choice["pattern"] = "juggling"
    choice["nextNodeId"] = "gone"
    choice["consequence"] = {"characterId": "nobody", "patternChanges": {"bogus": 1}}
    choice["enabledCondition"] = {"relationship": ["rival"], "mysteries": {"letterSender": "maybe"}}
    errors = validate_graph("maya", graph)
    joined = "\n".join(errors)
    assert "unknown pattern 'juggling'" in joined
    assert "targets unknown node 'gone'" in joined
    assert "unknown character 'nobody'" in joined
    assert "unknown pattern 'bogus'" in joined
    assert "unknown relationship status 'rival'" in joined
    assert "letter_sender=maybe" in joined
    assert any(error.startswith("graphs.maya.nodes.intro.choices[0]") for error in errors)


def test_validate_graph_reports_missing_start() -> None:
    errors = validate_graph("maya", simple_graph(startNodeId="nowhere"))
    assert errors == ["graphs.maya.startNodeId: Graph 'maya': references unknown node 'nowhere'."]


def test_virtual_and_cross_graph_targets_are_valid() -> None:
    maya = simple_graph()
    maya["nodes"]["intro"]["choices"].append({"choiceId": "travel", "nextNodeId": "TRAVEL_PENDING"})
    maya["nodes"]["intro"]["choices"].append({"choiceId": "visit", "nextNodeId": "samuel_hub"})
    samuel = {"startNodeId": "samuel_hub", "nodes": {"samuel_hub": {"tags": ["ending"]}}}
    assert validate_graphs({"maya": maya, "samuel": samuel}) == []
    assert any("samuel_hub" in error for error in validate_graph("maya", maya))


def test_validate_graph_flags_unknown_keys() -> None:
    graph = simple_graph()
    graph["nodes"]["intro"]["onEnter"] = [{"addGlobalFlag": ["typo"]}, "bad"]
    errors = validate_graph("maya", graph)
    assert any("unsupported state change key 'addGlobalFlag'" in error for error in errors)
    assert any("state change must be an object" in error for error in errors)

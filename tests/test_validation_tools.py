import json
import subprocess
import sys
from pathlib import Path

from tools import coverage, list_unreachable
from tools.softlock import analyze_softlocks


REPO_ROOT = Path(__file__).resolve().parents[1]


def write_graphs(tmp_path: Path, graphs: dict) -> Path:
    path = tmp_path / "graphs.json"
    path.write_text(json.dumps(graphs))
    return path


def run_validate(path: Path) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, str(REPO_ROOT / "tools" / "validate.py"), str(path)],
        capture_output=True,
        text=True,
        check=False,
    )


def test_validate_tool_flags_malformed_on_enter(tmp_path: Path) -> None:
    graphs = {"maya": {"startNodeId": "start", "nodes": {"start": {"onEnter": ["bad"], "tags": ["ending"]}}}}
    result = run_validate(write_graphs(tmp_path, graphs))
    assert result.returncode == 1
    assert "state change must be an object" in result.stdout


def test_validate_tool_passes_with_softlock_warnings(tmp_path: Path) -> None:
    graphs = {
        "maya": {
            "startNodeId": "start",
            "nodes": {
                "start": {"choices": [{"choiceId": "go", "nextNodeId": "gate"}]},
                "gate": {
                    "choices": [
                        {"choiceId": "in", "nextNodeId": "end", "enabledCondition": {"trust": {"min": 5}}}
                    ]
                },
                "end": {"tags": ["terminal"]},
            },
        }
    }
    result = run_validate(write_graphs(tmp_path, graphs))
    assert result.returncode == 0
    assert "graphs.maya.nodes.gate: all choices are gated" in result.stdout
    assert "Validation passed" in result.stdout


def test_softlock_traversal_reports_stranded_nodes() -> None:
    graphs = {
        "maya": {
            "startNodeId": "start",
            "nodes": {
                "start": {
                    "choices": [
                        {"choiceId": "a", "nextNodeId": "end", "visibleCondition": {"hasGlobalFlags": ["x"]}},
                        {"choiceId": "b", "nextNodeId": "end", "visibleCondition": {}},
                    ]
                },
                "end": {"tags": ["terminal"]},
                "island": {"choices": [{"choiceId": "c", "nextNodeId": "end", "enabledCondition": {"trust": {"min": 1}}}]},
            },
        }
    }
    warnings = analyze_softlocks(graphs)
    assert len(warnings) == 1
    assert warnings[0].startswith("graphs.maya.nodes.island: all choices are gated")


def test_list_unreachable_per_graph() -> None:
    graphs = {
        "graphs": {
            "maya": {
                "startNodeId": "start",
                "nodes": {
                    "start": {
                        "choices": [
                            {"choiceId": "go", "nextNodeId": "next"},
                            {"choiceId": "travel", "nextNodeId": "TRAVEL_PENDING"},
                            {"choiceId": "visit", "nextNodeId": "samuel_hub"},
                        ]
                    },
                    "next": {"choices": []},
                    "orphan": {"choices": []},
                },
            }
        }
    }
    adjacency, external = list_unreachable.build_graph(graphs["graphs"]["maya"])
    assert adjacency["start"] == ["next"]
    assert external == ["start -> samuel_hub"]
    assert list_unreachable.find_unreachable(graphs) == {"maya": ["orphan"]}


def test_coverage_counts_choice_patterns() -> None:
    graphs = {
        "maya": {
            "startNodeId": "a",
            "nodes": {
                "a": {
                    "choices": [
                        {"choiceId": "x", "nextNodeId": "a", "pattern": "building"},
                        {
                            "choiceId": "y",
                            "nextNodeId": "a",
                            "pattern": "helping",
                            "consequence": {"patternChanges": {"patience": 1, "helping": 2}},
                        },
                        {"choiceId": "z", "nextNodeId": "a", "pattern": "juggling"},
                    ]
                }
            },
        },
        "samuel": {"startNodeId": "s", "nodes": {"s": {"choices": [{"choiceId": "p", "nextNodeId": "s", "pattern": "patience"}]}}},
    }
    global_counts, graph_counts = coverage.collect_pattern_counts(graphs)
    assert global_counts == {"building": 1, "helping": 1, "patience": 2}
    assert graph_counts["samuel"] == {"patience": 1}
    assert coverage.audit(graphs, min_global=1) == 1


def test_validate_tool_exits_2_on_unreadable_file(tmp_path: Path) -> None:
    garbled = tmp_path / "graphs.json"
    garbled.write_bytes(b'{"maya": "\xff"}')
    result = run_validate(garbled)
    assert result.returncode == 2
    assert "not valid UTF-8" in result.stderr
    assert run_validate(tmp_path / "absent.json").returncode == 2


def test_tools_default_to_bundled_content() -> None:
    result = subprocess.run(
        [sys.executable, str(REPO_ROOT / "tools" / "validate.py")],
        capture_output=True,
        text=True,
        check=False,
    )
    assert result.returncode == 0
    assert "dialogue_graphs.json" in result.stdout
    unreachable = subprocess.run(
        [sys.executable, str(REPO_ROOT / "tools" / "list_unreachable.py")],
        capture_output=True,
        text=True,
        check=False,
    )
    assert unreachable.returncode == 0
    assert "All nodes reachable" in unreachable.stdout


def test_list_unreachable_ignores_non_mapping_payload() -> None:
    assert list_unreachable.find_unreachable(["not", "graphs"]) == {}

"""Tests for the blueprints command line entry point."""

import json

from blueprints.cli import EXIT_BAD_INPUT, EXIT_INVALID, EXIT_OK, main

NO_SYSTEM_NODES = [{"id": "n1", "name": "", "text": "A: User\nS: Sing\nEND: Done"}]


def write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


class TestParseAndExpand:
    def test_parse_prints_flowspec(self, tmp_path, capsys, karaoke_records):
        source = write_json(tmp_path / "board.json", karaoke_records)

        assert main(["parse", source]) == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data["meta"]["sourceId"] == "board"
        assert [step["id"] for step in data["steps"]] == ["S1", "S2"]

    def test_parse_accepts_extractor_payload(self, tmp_path, capsys, karaoke_records):
        source = write_json(tmp_path / "export.json", {"fileKey": "abc123", "extracted": karaoke_records})

        assert main(["parse", source]) == EXIT_OK
        assert json.loads(capsys.readouterr().out)["meta"]["sourceId"] == "abc123"

    def test_source_id_flag_wins(self, tmp_path, capsys, karaoke_records):
        source = write_json(tmp_path / "export.json", {"fileKey": "abc123", "extracted": karaoke_records})

        assert main(["parse", source, "--source-id", "manual"]) == EXIT_OK
        assert json.loads(capsys.readouterr().out)["meta"]["sourceId"] == "manual"

    def test_parse_then_expand_through_files(self, tmp_path, karaoke_records):
        source = write_json(tmp_path / "board.json", karaoke_records)
        spec_path = tmp_path / "out" / "flowspec.json"
        graph_path = tmp_path / "out" / "flowgraph.json"

        assert main(["parse", source, "-o", str(spec_path)]) == EXIT_OK
        assert main(["expand", str(spec_path), "-o", str(graph_path), "--project", "Karaoke"]) == EXIT_OK

        graph = json.loads(graph_path.read_text(encoding="utf-8"))
        assert graph["meta"]["project"] == "Karaoke"
        assert graph["meta"]["sourceId"] == "board"
        assert "END_SUCCESS" in graph["ends"]


class TestValidate:
    def test_valid_graph_report(self, tmp_path, capsys, valid_graph_dict):
        source = write_json(tmp_path / "graph.json", valid_graph_dict)

        assert main(["validate", source]) == EXIT_OK
        assert "VALIDATION PASSED" in capsys.readouterr().out

    def test_invalid_graph_exit_code(self, tmp_path, capsys, valid_graph_dict):
        valid_graph_dict["edges"].append({"from": "S1", "to": "S1"})
        source = write_json(tmp_path / "graph.json", valid_graph_dict)

        assert main(["validate", source]) == EXIT_INVALID
        assert "[SELF_LOOP]" in capsys.readouterr().out

    def test_non_strict_flag(self, tmp_path, valid_graph_dict):
        valid_graph_dict["edges"].append({"from": "S1", "to": "S1"})
        source = write_json(tmp_path / "graph.json", valid_graph_dict)

        assert main(["validate", source, "--non-strict"]) == EXIT_OK

    def test_json_output(self, tmp_path, capsys, valid_graph_dict):
        valid_graph_dict["edges"].append({"from": "S1", "to": "GHOST"})
        source = write_json(tmp_path / "graph.json", valid_graph_dict)

        assert main(["validate", source, "--json"]) == EXIT_INVALID
        data = json.loads(capsys.readouterr().out)
        assert data["valid"] is False
        assert [issue["code"] for issue in data["errors"]] == ["MISSING_NODE_REF"]


class TestBadInput:
    def test_missing_file(self, tmp_path, capsys):
        assert main(["parse", str(tmp_path / "nope.json")]) == EXIT_BAD_INPUT
        assert "Input file not found" in capsys.readouterr().err

    def test_malformed_json(self, tmp_path, capsys):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        assert main(["validate", str(path)]) == EXIT_BAD_INPUT
        assert "not valid JSON" in capsys.readouterr().err

    def test_wrong_payload_shape(self, tmp_path, capsys):
        source = write_json(tmp_path / "odd.json", {"records": []})

        assert main(["parse", source]) == EXIT_BAD_INPUT
        assert "extracted" in capsys.readouterr().err

    def test_expand_rejects_non_flowspec(self, tmp_path):
        source = write_json(tmp_path / "list.json", [1, 2, 3])

        assert main(["expand", source]) == EXIT_BAD_INPUT

    def test_validate_rejects_non_graph(self, tmp_path):
        source = write_json(tmp_path / "list.json", [1, 2, 3])

        assert main(["validate", source]) == EXIT_BAD_INPUT


class TestPipelineCommand:
    def test_pipeline_writes_graph(self, tmp_path, karaoke_records):
        source = write_json(tmp_path / "board.json", karaoke_records)
        output = tmp_path / "flowgraph.json"

        assert main(["pipeline", source, "-o", str(output), "--feature", "Karaoke"]) == EXIT_OK
        graph = json.loads(output.read_text(encoding="utf-8"))
        assert graph["meta"]["feature"] == "Karaoke"
        assert graph["starts"] == ["START"]

    def test_pipeline_failure_reports_to_stderr(self, tmp_path, capsys):
        source = write_json(tmp_path / "board.json", NO_SYSTEM_NODES)

        assert main(["pipeline", source]) == EXIT_INVALID
        captured = capsys.readouterr()
        assert "VALIDATION FAILED" in captured.err
        assert json.loads(captured.out)["nodes"]

    def test_pipeline_allow_empty_system(self, tmp_path):
        source = write_json(tmp_path / "board.json", NO_SYSTEM_NODES)

        assert main(["pipeline", source, "--allow-empty-system"]) == EXIT_OK

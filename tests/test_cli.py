"""Integration tests for the CLI main() function."""

from __future__ import annotations

import io
import json
import logging
import sys
from pathlib import Path

import pytest

from nmacore.cli import main, parse_split, run_analyses
from nmacore.parser.comparisons import parse_json


# Resolve sample data paths relative to this file so tests work regardless of cwd
_TESTS_DIR = Path(__file__).parent
_SAMPLE_DIR = _TESTS_DIR / "sample_data"
_JSON_SAMPLE = str(_SAMPLE_DIR / "network.json")
_CSV_SAMPLE = str(_SAMPLE_DIR / "comparisons.csv")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _run_main(args: list[str], capsys) -> tuple[int, str, str]:
    """Run main() and return (exit_code, stdout, stderr)."""
    code = main(args)
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def _run_json(args: list[str], capsys) -> dict:
    code, out, err = _run_main(args + ["--format", "json"], capsys)
    assert code == 0, err
    return json.loads(out)


def _write_json(tmp_path: Path, data, name: str = "network.json") -> str:
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


# ---------------------------------------------------------------------------
# Basic invocations
# ---------------------------------------------------------------------------

class TestMainBasicInvocations:

    def test_main_with_json_sample(self, capsys) -> None:
        """main() with the JSON sample exits 0 and prints every section."""
        code, out, err = _run_main([_JSON_SAMPLE, "--seed", "1"], capsys)
        assert code == 0
        assert "NETWORK GEOMETRY" in out
        assert "CONSISTENCY" in out
        assert "TREATMENT RANKING" in out

    def test_main_with_csv_sample(self, capsys) -> None:
        """main() with the CSV sample exits 0."""
        code, out, err = _run_main([_CSV_SAMPLE, "--seed", "1"], capsys)
        assert code == 0
        assert "DrugB" in out

    def test_main_no_color(self, capsys) -> None:
        code, out, err = _run_main([_JSON_SAMPLE, "--no-color", "--seed", "1"], capsys)
        assert code == 0

    def test_main_verbose(self, capsys, monkeypatch) -> None:
        """main() with --verbose emits progress to stderr."""
        package_logger = logging.getLogger("nmacore")
        monkeypatch.setattr(package_logger, "handlers", [])
        monkeypatch.setattr(package_logger, "level", package_logger.level)

        code, out, err = _run_main([_JSON_SAMPLE, "--verbose", "--seed", "1"], capsys)
        assert code == 0
        assert "Parsing input" in err
        assert "closed loops" in err

    def test_version(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc:
            main(["--version"])
        assert exc.value.code == 0
        assert "nmacore" in capsys.readouterr().out

    def test_stdin_input(self, capsys, monkeypatch) -> None:
        content = Path(_JSON_SAMPLE).read_text(encoding="utf-8")
        monkeypatch.setattr(sys, "stdin", io.StringIO(content))
        parsed = _run_json(["-", "--analysis", "geometry"], capsys)
        assert parsed["input"]["source"] == "stdin"
        assert parsed["geometry"]["num_treatments"] == 4


# ---------------------------------------------------------------------------
# JSON output
# ---------------------------------------------------------------------------

class TestJsonFormat:

    def test_all_sections(self, capsys) -> None:
        parsed = _run_json([_JSON_SAMPLE, "--seed", "1", "--simulations", "300"], capsys)
        assert {"metadata", "geometry", "consistency", "ranking"} <= set(parsed)
        assert parsed["metadata"]["scale"] == "log odds ratio"
        assert parsed["consistency"]["num_loops"] == 1
        assert parsed["ranking"]["n_simulations"] == 300
        assert parsed["ranking"]["best_treatment"]["treatment"] == "DrugB"

    def test_single_analysis(self, capsys) -> None:
        parsed = _run_json([_JSON_SAMPLE, "--analysis", "geometry"], capsys)
        assert "geometry" in parsed
        assert "consistency" not in parsed
        assert "ranking" not in parsed

    def test_seeded_runs_match(self, capsys) -> None:
        args = [_JSON_SAMPLE, "--analysis", "ranking", "--seed", "99", "--simulations", "200"]
        first = _run_json(args, capsys)
        second = _run_json(args, capsys)
        assert first["ranking"]["rankings"] == second["ranking"]["rankings"]
        assert first["ranking"]["seed"] == "99"

    def test_lower_is_better(self, capsys) -> None:
        parsed = _run_json(
            [_JSON_SAMPLE, "--analysis", "ranking", "--seed", "5", "--lower-is-better"],
            capsys,
        )
        assert parsed["ranking"]["higher_is_better"] is False
        assert parsed["ranking"]["best_treatment"]["treatment"] == "Placebo"

    def test_reference(self, capsys) -> None:
        parsed = _run_json(
            [_JSON_SAMPLE, "--analysis", "ranking", "--seed", "5", "--reference", "DrugA"],
            capsys,
        )
        assert parsed["ranking"]["num_treatments"] == 4

    def test_split(self, capsys) -> None:
        parsed = _run_json(
            [_JSON_SAMPLE, "--analysis", "consistency", "--split", "Placebo:DrugB"],
            capsys,
        )
        splits = parsed["consistency"]["node_splits"]
        assert len(splits) == 1
        assert splits[0]["comparison"] == {"treatment_a": "Placebo", "treatment_b": "DrugB"}
        assert splits[0]["indirect_via"] == ["DrugA"]

    def test_output_file(self, capsys, tmp_path) -> None:
        out_path = tmp_path / "report.json"
        code, out, err = _run_main(
            [_JSON_SAMPLE, "--format", "json", "--output", str(out_path), "--seed", "1"],
            capsys,
        )
        assert code == 0
        assert "Report saved to" in err
        assert "geometry" in json.loads(out_path.read_text(encoding="utf-8"))

    def test_terminal_output_file(self, capsys, tmp_path) -> None:
        out_path = tmp_path / "report.txt"
        code, out, err = _run_main([_JSON_SAMPLE, "-o", str(out_path), "--seed", "1"], capsys)
        assert code == 0
        assert "NETWORK GEOMETRY" in out_path.read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Ranking input selection
# ---------------------------------------------------------------------------

class TestRankingInput:

    def test_explicit_effects_used(self, capsys, tmp_path) -> None:
        path = _write_json(tmp_path, {
            "comparisons": [],
            "effects": [
                {"treatment": "A", "effect": 0.0, "standard_error": 0.1},
                {"treatment": "B", "effect": -1.0, "standard_error": 0.1},
            ],
            "higher_is_better": False,
        })
        parsed = _run_json([path, "--analysis", "ranking", "--seed", "2"], capsys)
        assert parsed["ranking"]["best_treatment"]["treatment"] == "B"
        assert "notes" not in parsed

    def test_disconnected_network_skips_ranking(self, capsys, tmp_path) -> None:
        path = _write_json(tmp_path, [
            {"study_id": "S1", "treatment_a": "A", "treatment_b": "B",
             "effect_estimate": 0.2, "standard_error": 0.1},
            {"study_id": "S2", "treatment_a": "C", "treatment_b": "D",
             "effect_estimate": 0.4, "standard_error": 0.1},
        ])
        parsed = _run_json([path], capsys)
        assert "ranking" not in parsed
        assert any("Ranking skipped" in note for note in parsed["notes"])
        assert parsed["geometry"]["components"] == [["A", "B"], ["C", "D"]]

    def test_star_network_untestable(self, capsys, tmp_path) -> None:
        path = _write_json(tmp_path, [
            {"study_id": f"S{i}", "treatment_a": "Placebo", "treatment_b": leaf,
             "effect_estimate": 0.3, "standard_error": 0.1}
            for i, leaf in enumerate(["A", "B", "C"], 1)
        ])
        parsed = _run_json([path, "--seed", "1"], capsys)
        assert parsed["geometry"]["is_star_shaped"] is True
        assert parsed["consistency"]["status"] == "untestable"
        assert parsed["consistency"]["num_loops"] == 0

    def test_zero_variance_first_treatment_still_ranks_rest(self, capsys, tmp_path) -> None:
        path = _write_json(tmp_path, [
            {"study_id": "S1", "treatment_a": "P", "treatment_b": "A",
             "effect_estimate": 0.5, "standard_error": 0.0},
            {"study_id": "S2", "treatment_a": "A", "treatment_b": "B",
             "effect_estimate": 1.0, "standard_error": 0.1},
            {"study_id": "S3", "treatment_a": "B", "treatment_b": "C",
             "effect_estimate": 1.0, "standard_error": 0.1},
            {"study_id": "S4", "treatment_a": "A", "treatment_b": "C",
             "effect_estimate": 2.0, "standard_error": 0.15},
        ])
        parsed = _run_json([path, "--analysis", "ranking", "--seed", "3"], capsys)
        ranked = {entry["treatment"] for entry in parsed["ranking"]["rankings"]}
        assert ranked == {"A", "B", "C"}
        assert not any("Ranking skipped" in note for note in parsed["notes"])
        assert any("not ranked" in w for w in parsed["ranking"]["warnings"])

    def test_reference_without_evidence_noted(self, capsys, tmp_path) -> None:
        path = _write_json(tmp_path, [
            {"study_id": "S1", "treatment_a": "P", "treatment_b": "A",
             "effect_estimate": 0.5, "standard_error": 0.0},
            {"study_id": "S2", "treatment_a": "A", "treatment_b": "B",
             "effect_estimate": 1.0, "standard_error": 0.1},
        ])
        parsed = _run_json([path, "--analysis", "ranking", "--reference", "P"], capsys)
        assert "ranking" not in parsed
        assert any("no usable direct evidence" in note for note in parsed["notes"])

    def test_run_analyses_directly(self) -> None:
        data = parse_json(Path(_JSON_SAMPLE).read_text(encoding="utf-8"))
        results = run_analyses(data, analysis="geometry")
        assert results.geometry is not None
        assert results.consistency is None
        assert results.ranking is None


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TestErrors:

    def test_missing_file(self, capsys) -> None:
        code, out, err = _run_main(["/nonexistent/network.json"], capsys)
        assert code == 1
        assert "not found" in err

    def test_directory_input(self, capsys, tmp_path) -> None:
        code, out, err = _run_main([str(tmp_path)], capsys)
        assert code == 1
        assert "not a file" in err

    def test_invalid_network(self, capsys, tmp_path) -> None:
        path = _write_json(tmp_path, [{"treatment_a": "A", "treatment_b": "A"}])
        code, out, err = _run_main([path], capsys)
        assert code == 1
        assert "Error (InvalidNetworkError)" in err
        assert "--verbose" in err

    def test_single_treatment_ranking(self, capsys, tmp_path) -> None:
        path = _write_json(tmp_path, {
            "comparisons": [],
            "effects": [{"treatment": "A", "effect": 0.0, "standard_error": 0.1}],
        })
        code, out, err = _run_main([path, "--analysis", "ranking"], capsys)
        assert code == 1
        assert "at least 2 treatments" in err

    def test_unknown_split_treatment(self, capsys) -> None:
        code, out, err = _run_main([_JSON_SAMPLE, "--split", "Placebo:DrugZ"], capsys)
        assert code == 1
        assert "DrugZ" in err

    def test_zero_simulations(self, capsys) -> None:
        code, out, err = _run_main([_JSON_SAMPLE, "--simulations", "0"], capsys)
        assert code == 1

    def test_malformed_split(self) -> None:
        with pytest.raises(SystemExit):
            main([_JSON_SAMPLE, "--split", "Placebo-DrugB"])


class TestParseSplit:

    def test_valid(self) -> None:
        assert parse_split("A:B") == ("A", "B")
        assert parse_split(" A : B ") == ("A", "B")

    @pytest.mark.parametrize("value", ["AB", "A:", ":B", "A:B:C"])
    def test_invalid(self, value) -> None:
        import argparse
        with pytest.raises(argparse.ArgumentTypeError):
            parse_split(value)

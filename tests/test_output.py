"""Tests for output formatters."""

import io
import json
import math

import pytest
from rich.console import Console

from nmacore.config import RankingSettings
from nmacore.engine.consistency import analyze_consistency
from nmacore.engine.geometry import analyze_geometry
from nmacore.engine.network import Comparison, build_network
from nmacore.engine.ranker import TreatmentEffect, rank_treatments
from nmacore.output.json_out import JSONOutput, _num, export_json
from nmacore.output.terminal import TerminalOutput


def _make_triangle_graph(ac_effect=2.0):
    return build_network([
        Comparison("A", "B", 1.0, 0.1, study_id="S1"),
        Comparison("B", "C", 1.0, 0.1, study_id="S2"),
        Comparison("A", "C", ac_effect, 0.15, study_id="S3"),
    ])


def _make_star_graph():
    return build_network([
        Comparison("Placebo", leaf, 0.3, 0.1, study_id=f"S{i}")
        for i, leaf in enumerate(("A", "B", "C"), 1)
    ])


def _make_reports(graph=None):
    graph = graph or _make_triangle_graph()
    ranking = rank_treatments(
        [
            TreatmentEffect("A", 0.0, 0.1),
            TreatmentEffect("B", 1.0, 0.1),
            TreatmentEffect("C", 2.0, 0.1),
        ],
        settings=RankingSettings(n_simulations=500, seed=3),
    )
    return analyze_geometry(graph), analyze_consistency(graph), ranking


def _recording_console() -> Console:
    return Console(file=io.StringIO(), record=True, width=140, no_color=True)


class TestTerminalOutput:
    """Tests for Rich terminal output."""

    def test_create_default(self):
        """Test default initialization."""
        output = TerminalOutput()
        assert output.console is not None

    def test_create_no_color(self):
        """Test no-color initialization."""
        output = TerminalOutput(no_color=True)
        assert output.console is not None

    def test_create_custom_console(self):
        """Test custom console initialization."""
        console = Console(file=None, force_terminal=True)
        output = TerminalOutput(console=console)
        assert output.console is console

    def test_header(self):
        console = _recording_console()
        TerminalOutput(console=console).print_header(
            {"source": "network.json", "num_treatments": 3, "scale": "log odds ratio"}
        )
        text = console.export_text()
        assert "Network Meta-Analysis" in text
        assert "network.json" in text
        assert "log odds ratio" in text

    def test_full_report(self):
        geometry, consistency, ranking = _make_reports()
        console = _recording_console()
        output = TerminalOutput(console=console)
        output.print_header()
        output.print_geometry(geometry)
        output.print_consistency(consistency)
        output.print_ranking(ranking)
        output.print_warnings(geometry.warnings + consistency.warnings + ranking.warnings)
        output.print_footer()

        text = console.export_text()
        assert "NETWORK GEOMETRY" in text
        assert "CONSISTENCY" in text
        assert "TREATMENT RANKING" in text
        assert "A - B - C" in text
        assert "CONSISTENT" in text
        assert "geometry, consistency, ranking" in text

    def test_untestable_consistency(self):
        graph = _make_star_graph()
        console = _recording_console()
        TerminalOutput(console=console).print_consistency(analyze_consistency(graph))
        text = console.export_text()
        assert "UNTESTABLE" in text
        assert "not assessed" in text

    def test_disconnected_geometry(self):
        graph = build_network([Comparison("A", "B"), Comparison("C", "D")])
        console = _recording_console()
        TerminalOutput(console=console).print_geometry(analyze_geometry(graph))
        text = console.export_text()
        assert "Component 2: C, D" in text

    def test_treatment_names_with_brackets(self):
        graph = build_network([
            Comparison("[low dose]", "B", 0.1, 0.1, study_id="S1"),
            Comparison("B", "C", 0.1, 0.1, study_id="S2"),
        ])
        console = _recording_console()
        TerminalOutput(console=console).print_geometry(analyze_geometry(graph))
        assert "[low dose]" in console.export_text()

    def test_warnings_and_notes(self):
        geometry, _, _ = _make_reports(_make_star_graph())
        console = _recording_console()
        TerminalOutput(console=console).print_warnings(geometry.warnings, ["Ranking skipped"])
        text = console.export_text()
        assert "WARNINGS" in text
        assert "star-shaped" in text
        assert "Ranking skipped" in text

    def test_no_warnings_prints_nothing(self):
        console = _recording_console()
        TerminalOutput(console=console).print_warnings([])
        assert console.export_text() == ""


class TestJSONOutput:
    """Tests for JSON output."""

    def test_to_json_is_valid_json(self):
        """Test JSON output is valid JSON."""
        geometry, consistency, ranking = _make_reports()
        result = JSONOutput().to_json(geometry=geometry, consistency=consistency, ranking=ranking)
        parsed = json.loads(result)
        assert set(parsed) == {"metadata", "geometry", "consistency", "ranking"}

    def test_metadata(self):
        parsed = JSONOutput().generate(scale="log odds ratio")
        assert parsed["metadata"]["tool"] == "nmacore"
        assert parsed["metadata"]["scale"] == "log odds ratio"
        assert "generated_at" in parsed["metadata"]

    def test_sections_optional(self):
        geometry, _, _ = _make_reports()
        parsed = JSONOutput().generate(geometry=geometry)
        assert "consistency" not in parsed
        assert "ranking" not in parsed

    def test_geometry_section(self):
        geometry, _, _ = _make_reports(_make_star_graph())
        section = JSONOutput().generate(geometry=geometry)["geometry"]
        assert section["is_star_shaped"] is True
        assert section["central_treatment"] == "Placebo"
        assert section["network_density"] == pytest.approx(0.5)
        assert section["geometry_quality"] == "excellent"
        assert section["treatment_degrees"] == {"Placebo": 3, "A": 1, "B": 1, "C": 1}
        assert all(isinstance(w, str) for w in section["warnings"])

    def test_consistency_section(self):
        _, consistency, _ = _make_reports(_make_triangle_graph(ac_effect=0.0))
        section = JSONOutput().generate(consistency=consistency)["consistency"]
        assert section["status"] == "inconsistent"
        assert section["severity"] == "severe"
        assert section["num_loops"] == 1
        assert section["num_inconsistent_loops"] == 1
        assert section["loops"][0]["is_inconsistent"] is True
        assert section["global_test"]["df"] == 1
        assert section["node_splits"][0]["comparison"] == {"treatment_a": "A", "treatment_b": "B"}

    def test_untestable_consistency_section(self):
        _, consistency, _ = _make_reports(_make_star_graph())
        section = JSONOutput().generate(consistency=consistency)["consistency"]
        assert section["status"] == "untestable"
        assert section["consistency_assessed"] is False
        assert section["severity"] is None
        assert section["inconsistency_detected"] is None
        assert section["global_test"] is None
        assert len(section["notices"]) == 1

    def test_ranking_section(self):
        _, _, ranking = _make_reports()
        section = JSONOutput().generate(ranking=ranking)["ranking"]
        assert section["best_treatment"]["treatment"] == "C"
        assert section["worst_treatment"]["treatment"] == "A"
        assert set(section["rankings"][0]) == {
            "treatment", "sucra", "p_score", "prob_best",
            "mean_rank", "median_rank", "rank_probabilities",
        }
        assert section["seed"] == "3"
        assert section["n_simulations"] == 500

    def test_non_finite_numbers_dropped(self):
        assert _num(math.nan) is None
        assert _num(math.inf) is None
        assert _num(None) is None
        assert _num(0.1234567891) == pytest.approx(0.123457)

    def test_save(self, tmp_path):
        geometry, _, _ = _make_reports()
        path = tmp_path / "report.json"
        JSONOutput().save(path, geometry=geometry)
        parsed = json.loads(path.read_text(encoding="utf-8"))
        assert "geometry" in parsed

    def test_export_json(self, tmp_path):
        geometry, _, _ = _make_reports()
        result = export_json(geometry=geometry)
        assert json.loads(result)["geometry"]["num_treatments"] == 3
        assert export_json(tmp_path / "out.json", geometry=geometry) is None
        assert (tmp_path / "out.json").exists()

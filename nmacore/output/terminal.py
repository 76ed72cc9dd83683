"""Rich terminal output for analysis results.

Provides formatted, color-coded terminal output using the Rich library.
Theme: Catppuccin Mocha (https://catppuccin.com/palette/)
"""

from __future__ import annotations

from rich.align import Align
from rich.box import ROUNDED
from rich.console import Console, Group, RenderableType
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from .. import __version__
from ..engine.consistency import ConsistencyReport, ConsistencyStatus, Severity
from ..engine.geometry import GeometryQuality, GeometryReport
from ..engine.ranker import RankingReport

# Catppuccin Mocha palette
MOCHA = {
    "mauve": "#cba6f7",
    "red": "#f38ba8",
    "maroon": "#eba0ac",
    "peach": "#fab387",
    "yellow": "#f9e2af",
    "green": "#a6e3a1",
    "teal": "#94e2d5",
    "sapphire": "#74c7ec",
    "blue": "#89b4fa",
    "lavender": "#b4befe",
    "text": "#cdd6f4",
    "subtext1": "#bac2de",
    "subtext0": "#a6adc8",
    "overlay1": "#7f849c",
    "overlay0": "#6c7086",
    "surface2": "#585b70",
    "surface1": "#45475a",
    "surface0": "#313244",
    "crust": "#11111b",
}

# Rich theme for markup tags
MOCHA_THEME = Theme({
    "info": MOCHA["sapphire"],
    "warning": MOCHA["peach"],
    "danger": MOCHA["red"],
    "success": MOCHA["green"],
})

QUALITY_COLORS = {
    GeometryQuality.EXCELLENT: MOCHA["green"],
    GeometryQuality.GOOD: MOCHA["teal"],
    GeometryQuality.FAIR: MOCHA["yellow"],
    GeometryQuality.POOR: MOCHA["red"],
}

SEVERITY_COLORS = {
    Severity.NONE: MOCHA["green"],
    Severity.MILD: MOCHA["yellow"],
    Severity.MODERATE: MOCHA["peach"],
    Severity.SEVERE: MOCHA["red"],
}

STATUS_COLORS = {
    ConsistencyStatus.CONSISTENT: MOCHA["green"],
    ConsistencyStatus.INCONSISTENT: MOCHA["red"],
    ConsistencyStatus.UNTESTABLE: MOCHA["overlay1"],
}


# ── Badge / display helpers ──────────────────────────────────────────────


def _badge(label: str, color: str) -> Text:
    """Render a label as an outlined badge."""
    badge = Text()
    badge.append(f" {label} ", style=f"bold {color}")
    return badge


def _score_bar(score: float, width: int = 20) -> Text:
    """Build a colored progress bar for a score value (0-100).

    Returns a Rich Text object like: ████████████████░░░░ 85.0
    """
    filled = int(round(score / 100 * width))
    empty = width - filled

    if score >= 80:
        bar_color = MOCHA["green"]
    elif score >= 60:
        bar_color = MOCHA["yellow"]
    elif score >= 40:
        bar_color = MOCHA["peach"]
    else:
        bar_color = MOCHA["red"]

    bar = Text()
    bar.append("█" * filled, style=bar_color)
    bar.append("░" * empty, style=MOCHA["surface2"])
    bar.append(f" {score:.1f}", style=f"bold {bar_color}")
    return bar


def _p_value(p: float) -> str:
    return "<0.001" if p < 0.001 else f"{p:.3f}"


def _section(body: RenderableType, title: str, color: str) -> Panel:
    return Panel(
        body,
        title=f"[bold {color}]{title}[/bold {color}]",
        title_align="left",
        box=ROUNDED,
        border_style=color,
        padding=(0, 1),
    )


def _bullets(items: list, color: str, marker: str = "-") -> Text:
    text = Text()
    for i, item in enumerate(items):
        text.append(f"{marker} ", style=color)
        text.append(str(item), style=MOCHA["text"])
        if i < len(items) - 1:
            text.append("\n")
    return text


# ── Main output class ────────────────────────────────────────────────────


class TerminalOutput:
    """Rich terminal output formatter.

    One bordered panel per analysis, followed by collected warnings and a
    footer rule.
    """

    def __init__(
        self,
        console: Console | None = None,
        no_color: bool = False,
    ):
        """Initialize terminal output.

        Args:
            console: Optional Rich console instance
            no_color: If True, disable colored output
        """
        if console:
            self.console = console
        elif no_color:
            self.console = Console(no_color=True, highlight=False)
        else:
            self.console = Console(theme=MOCHA_THEME)

        self._sections: list[str] = []

    # ── Public API ────────────────────────────────────────────────────

    def print_header(self, input_info: dict | None = None) -> None:
        """Print the banner and a one-line description of the input.

        Args:
            input_info: Optional dictionary with input details
        """
        self.console.print()
        self.console.print(
            Panel(
                Align.center(
                    Text(
                        "NMACORE - Network Meta-Analysis",
                        style=f"bold {MOCHA['mauve']}",
                    )
                ),
                box=ROUNDED,
                border_style=MOCHA["mauve"],
                padding=(0, 1),
            )
        )

        if input_info:
            info = Text()
            labels = [
                ("source", "Input"),
                ("num_treatments", "Treatments"),
                ("num_comparisons", "Comparisons"),
                ("scale", "Scale"),
            ]
            first = True
            for key, label in labels:
                if input_info.get(key) is None:
                    continue
                if not first:
                    info.append(" | ", style=MOCHA["surface2"])
                info.append(f"{label}: ", style=MOCHA["subtext0"])
                info.append(str(input_info[key]), style=f"bold {MOCHA['text']}")
                first = False
            self.console.print(info)
        self.console.print()

    def print_geometry(self, report: GeometryReport) -> None:
        """Print the network geometry panel."""
        self._sections.append("geometry")

        table = Table(show_header=False, box=None, padding=(0, 2), show_edge=False)
        table.add_column("Key", style=MOCHA["subtext0"], min_width=18)
        table.add_column("Value", style=f"bold {MOCHA['text']}")

        table.add_row("Quality:", _badge(
            report.geometry_quality.value.upper(),
            QUALITY_COLORS[report.geometry_quality],
        ))
        table.add_row("Treatments:", str(report.num_treatments))
        table.add_row("Studies:", str(report.num_studies))
        table.add_row("Comparisons:", str(report.num_comparisons))
        table.add_row("Density:", f"{report.network_density:.3f}")
        table.add_row("Avg connections:", f"{report.avg_connections:.2f}")

        connected = Text("yes", style=MOCHA["green"]) if report.is_connected else \
            Text(f"no ({report.num_components} components)", style=MOCHA["red"])
        table.add_row("Connected:", connected)

        if report.is_star_shaped:
            table.add_row("Star-shaped:", Text(
                f"yes, around {report.central_treatment}", style=MOCHA["peach"]
            ))
        if report.multi_arm_trials:
            trials = ", ".join(
                f"{t.study_id} ({t.n_arms} arms)" for t in report.multi_arm_trials
            )
            table.add_row("Multi-arm trials:", Text(trials))
        if report.isolated_treatments:
            table.add_row("Isolated:", Text(", ".join(report.isolated_treatments)))
        table.add_row("Confidence:", f"{report.confidence:.0%}")

        renderables: list[RenderableType] = [table]

        if not report.is_connected:
            renderables.append(Rule(style=MOCHA["surface0"]))
            for i, component in enumerate(report.components, 1):
                line = Text()
                line.append(f"Component {i}: ", style=MOCHA["subtext0"])
                line.append(", ".join(component), style=MOCHA["text"])
                renderables.append(line)

        degrees = Table(
            box=ROUNDED,
            border_style=MOCHA["surface2"],
            header_style=f"bold {MOCHA['sapphire']}",
            padding=(0, 1),
        )
        degrees.add_column("Treatment")
        degrees.add_column("Degree", justify="right")
        degrees.add_column("Studies", justify="right")
        degrees.add_column("Connected to", style=MOCHA["subtext1"])
        for node in report.nodes:
            degrees.add_row(
                Text(node.treatment, style=f"bold {MOCHA['text']}"),
                str(node.degree),
                str(node.n_studies),
                Text(", ".join(node.connected_to) or "-"),
            )
        renderables.append(Rule(style=MOCHA["surface0"]))
        renderables.append(degrees)

        if report.recommendations:
            renderables.append(Rule(style=MOCHA["surface0"]))
            renderables.append(_bullets(report.recommendations, MOCHA["teal"]))

        self.console.print(_section(Group(*renderables), "NETWORK GEOMETRY", MOCHA["blue"]))
        self.console.print()

    def print_consistency(self, report: ConsistencyReport) -> None:
        """Print loop, node-split and global test results."""
        self._sections.append("consistency")
        status_color = STATUS_COLORS[report.status]

        summary = Text()
        summary.append("Status: ", style=MOCHA["subtext0"])
        summary.append_text(_badge(report.status.value.upper(), status_color))
        if report.severity is not None:
            summary.append("  Severity: ", style=MOCHA["subtext0"])
            summary.append_text(_badge(
                report.severity.value.upper(), SEVERITY_COLORS[report.severity]
            ))
        summary.append(f"  Loops: {report.num_loops}", style=MOCHA["text"])
        if report.num_loops:
            summary.append(f" ({report.num_inconsistent_loops} inconsistent)",
                           style=MOCHA["subtext0"])

        renderables: list[RenderableType] = [
            summary,
            Text(report.interpretation, style=MOCHA["subtext1"]),
        ]

        if report.loops:
            loops = Table(
                box=ROUNDED,
                border_style=MOCHA["surface2"],
                header_style=f"bold {MOCHA['sapphire']}",
                padding=(0, 1),
            )
            loops.add_column("Loop")
            loops.add_column("IF", justify="right")
            loops.add_column("SE", justify="right")
            loops.add_column("z", justify="right")
            loops.add_column("p", justify="right")
            loops.add_column("Severity")
            for loop in report.loops:
                loops.add_row(
                    Text(" - ".join(loop.treatments)),
                    f"{loop.inconsistency_factor:.3f}",
                    f"{loop.se_inconsistency:.3f}",
                    f"{loop.z_score:.2f}",
                    _p_value(loop.p_value),
                    Text(loop.severity.value, style=SEVERITY_COLORS[loop.severity]),
                )
            renderables.append(loops)

        if report.node_splits:
            splits = Table(
                box=ROUNDED,
                border_style=MOCHA["surface2"],
                header_style=f"bold {MOCHA['sapphire']}",
                padding=(0, 1),
            )
            splits.add_column("Comparison")
            splits.add_column("Direct", justify="right")
            splits.add_column("Indirect", justify="right")
            splits.add_column("Diff", justify="right")
            splits.add_column("p", justify="right")
            splits.add_column("Via", style=MOCHA["subtext1"])
            for split in report.node_splits:
                splits.add_row(
                    Text(f"{split.treatment_a} vs {split.treatment_b}"),
                    f"{split.direct_estimate:.3f}",
                    f"{split.indirect_estimate:.3f}",
                    Text(f"{split.difference:.3f}",
                         style=SEVERITY_COLORS[split.severity]),
                    _p_value(split.p_value),
                    Text(", ".join(split.indirect_via)),
                )
            renderables.append(splits)

        if report.global_test is not None:
            test = report.global_test
            line = Text()
            line.append("Global test: ", style=MOCHA["subtext0"])
            line.append(
                f"chi2 = {test.chi_square:.2f}, df = {test.df}, p = {_p_value(test.p_value)}",
                style=MOCHA["red"] if test.is_inconsistent else MOCHA["text"],
            )
            renderables.append(line)

        if report.notices:
            renderables.append(_bullets(report.notices, MOCHA["overlay1"], marker="?"))

        if report.recommendations:
            renderables.append(Rule(style=MOCHA["surface0"]))
            renderables.append(_bullets(report.recommendations, MOCHA["teal"]))

        self.console.print(_section(Group(*renderables), "CONSISTENCY", MOCHA["mauve"]))
        self.console.print()

    def print_ranking(self, report: RankingReport) -> None:
        """Print the ranking table with SUCRA bars."""
        self._sections.append("ranking")

        table = Table(
            box=ROUNDED,
            border_style=MOCHA["surface2"],
            header_style=f"bold {MOCHA['sapphire']}",
            padding=(0, 1),
        )
        table.add_column("#", justify="right", style=MOCHA["overlay1"])
        table.add_column("Treatment")
        table.add_column("SUCRA", min_width=26)
        table.add_column("P-score", justify="right")
        table.add_column("P(best)", justify="right")
        table.add_column("Mean rank", justify="right")
        table.add_column("Median", justify="right")

        for position, ranking in enumerate(report.rankings, 1):
            table.add_row(
                str(position),
                Text(ranking.treatment, style=f"bold {MOCHA['text']}"),
                _score_bar(ranking.sucra),
                f"{ranking.p_score:.3f}",
                f"{ranking.prob_best:.1%}",
                f"{ranking.mean_rank:.2f}",
                str(ranking.median_rank),
            )

        direction = "higher is better" if report.higher_is_better else "lower is better"
        meta = Text()
        meta.append(f"{report.n_simulations:,} simulations", style=MOCHA["subtext0"])
        meta.append(" | ", style=MOCHA["surface2"])
        meta.append(direction, style=MOCHA["subtext0"])
        meta.append(" | ", style=MOCHA["surface2"])
        meta.append(f"seed {report.seed}", style=MOCHA["subtext0"])
        meta.append(" | ", style=MOCHA["surface2"])
        meta.append(f"confidence {report.confidence:.0%}", style=MOCHA["subtext0"])

        renderables: list[RenderableType] = [
            table,
            meta,
            Text(report.interpretation, style=MOCHA["subtext1"]),
        ]
        if report.recommendations:
            renderables.append(Rule(style=MOCHA["surface0"]))
            renderables.append(_bullets(report.recommendations, MOCHA["teal"]))

        self.console.print(_section(Group(*renderables), "TREATMENT RANKING", MOCHA["yellow"]))
        self.console.print()

    def print_warnings(self, warnings: list, notes: list[str] | None = None) -> None:
        """Print data-quality warnings and run notes, if any."""
        items = [str(w) for w in warnings] + list(notes or [])
        if not items:
            return
        self.console.print(
            _section(_bullets(items, MOCHA["peach"], marker="!"), "WARNINGS", MOCHA["peach"])
        )
        self.console.print()

    def print_footer(self) -> None:
        footer_parts = [f"nmacore v{__version__}"]
        if self._sections:
            footer_parts.append(", ".join(self._sections))
        footer_text = f"[{MOCHA['overlay1']}]{escape(' | '.join(footer_parts))}[/{MOCHA['overlay1']}]"

        self.console.print(Rule(style=MOCHA["surface2"]))
        self.console.print(Align.center(Text.from_markup(footer_text)))
        self.console.print()

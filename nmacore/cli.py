"""nmacore CLI - Network Meta-Analysis engine.

Main command-line interface for assessing treatment networks.
"""

from __future__ import annotations

import argparse
import io
import logging
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path

from rich.console import Console

from . import __version__
from .config import CONFIG
from .engine.consistency import ConsistencyReport, analyze_consistency
from .engine.geometry import GeometryReport, analyze_geometry
from .engine.network import build_network
from .engine.ranker import RankingReport, TreatmentRanker, effects_from_network
from .errors import DataQualityWarning, InvalidNetworkError
from .parser.comparisons import NetworkInput, load_input

ANALYSES = ['all', 'geometry', 'consistency', 'ranking']


@dataclass
class AnalysisResults:
    """Reports produced by one CLI run."""
    geometry: GeometryReport | None = None
    consistency: ConsistencyReport | None = None
    ranking: RankingReport | None = None
    notes: list[str] = field(default_factory=list)

    @property
    def warnings(self) -> list[DataQualityWarning]:
        """All report warnings, first occurrence kept."""
        collected: list[DataQualityWarning] = []
        for report in (self.geometry, self.consistency, self.ranking):
            if report is not None:
                collected.extend(report.warnings)
        return list(dict.fromkeys(collected))


def parse_split(value: str) -> tuple[str, str]:
    """Parse an ``A:B`` node-split target."""
    parts = value.split(':')
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise argparse.ArgumentTypeError(
            f"invalid comparison '{value}', expected TREATMENT_A:TREATMENT_B"
        )
    return parts[0].strip(), parts[1].strip()


def run_analyses(
    data: NetworkInput,
    analysis: str = 'all',
    split_edges: list[tuple[str, str]] | None = None,
    ranker: TreatmentRanker | None = None,
    higher_is_better: bool = True,
    reference: str | None = None,
    verbose: bool = False
) -> AnalysisResults:
    """Run the selected analyses on parsed input.

    Args:
        data: Parsed input
        analysis: 'all', 'geometry', 'consistency' or 'ranking'
        split_edges: Comparisons to node-split (default: all eligible)
        ranker: Configured ranker (default settings when omitted)
        higher_is_better: Whether larger effects are preferable
        reference: Reference treatment when ranking from direct evidence
        verbose: Print progress to stderr

    Returns:
        AnalysisResults
    """
    results = AnalysisResults()
    wants = {analysis} if analysis != 'all' else {'geometry', 'consistency', 'ranking'}

    graph = None
    if wants - {'ranking'} or not data.effects:
        graph = build_network(data.comparisons, data.treatments)
        if verbose:
            print(
                f"Built network: {graph.num_treatments} treatments, "
                f"{graph.num_edges} direct comparisons",
                file=sys.stderr
            )

    if 'geometry' in wants:
        results.geometry = analyze_geometry(graph, CONFIG.geometry)

    if 'consistency' in wants:
        results.consistency = analyze_consistency(graph, split_edges, CONFIG.consistency)
        if verbose:
            print(f"Found {results.consistency.num_loops} closed loops", file=sys.stderr)

    if 'ranking' in wants:
        ranker = ranker or TreatmentRanker(CONFIG.ranking)
        if data.effects:
            results.ranking = ranker.rank(data.effects, higher_is_better=higher_is_better)
        elif not graph.is_connected:
            results.notes.append(
                "Ranking skipped: the network is disconnected. Provide pooled "
                "'effects' in the input to rank treatments."
            )
        else:
            prep_warnings: list[DataQualityWarning] = []
            try:
                effects = effects_from_network(
                    graph, reference, CONFIG.consistency, prep_warnings
                )
            except InvalidNetworkError as e:
                results.notes.append(f"Ranking skipped: {e}")
            else:
                results.ranking = ranker.rank(effects, higher_is_better=higher_is_better)
                results.ranking.warnings[:0] = prep_warnings
                results.notes.append(
                    "Ranking uses direct evidence along a spanning tree; supply pooled "
                    "network 'effects' for model-based rankings."
                )
        if verbose and results.ranking is not None:
            print(
                f"Ranked {results.ranking.num_treatments} treatments "
                f"({results.ranking.n_simulations} simulations)",
                file=sys.stderr
            )

    return results


def _enable_debug_logging() -> None:
    """Send the package's debug logs to stderr."""
    package_logger = logging.getLogger('nmacore')
    package_logger.setLevel(logging.DEBUG)
    if not package_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter('%(levelname)s %(name)s: %(message)s'))
        package_logger.addHandler(handler)


def _input_info(data: NetworkInput, source: str) -> dict:
    treatments = set(data.treatments)
    for comp in data.comparisons:
        treatments.update((comp.treatment_a, comp.treatment_b))
    return {
        "source": source,
        "num_treatments": len(treatments),
        "num_comparisons": len(data.comparisons),
        "scale": data.scale,
    }


def _print_terminal(
    results: AnalysisResults,
    info: dict,
    console: Console | None = None,
    no_color: bool = False
) -> None:
    from .output.terminal import TerminalOutput

    output = TerminalOutput(console=console, no_color=no_color)
    output.print_header(info)
    if results.geometry is not None:
        output.print_geometry(results.geometry)
    if results.consistency is not None:
        output.print_consistency(results.consistency)
    if results.ranking is not None:
        output.print_ranking(results.ranking)
    output.print_warnings(results.warnings, results.notes)
    output.print_footer()


def main(args: list[str] | None = None) -> int:
    """Main CLI entry point.

    Args:
        args: Command line arguments (defaults to sys.argv)

    Returns:
        Exit code
    """
    parser = argparse.ArgumentParser(
        prog='nmacore',
        description='Network Meta-Analysis engine - assess network geometry, '
                    'consistency and treatment rankings',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  nmacore comparisons.csv
  nmacore -                                        # read from stdin
  cat network.json | nmacore                       # pipe input
  nmacore network.json --analysis consistency --split A:C
  nmacore network.json --format json --output report.json
  nmacore network.json --analysis ranking --seed 42 --lower-is-better
        """
    )

    parser.add_argument(
        'input',
        nargs='?',
        help='Input file path (JSON or CSV), or "-" to read from stdin (omit when piping)'
    )

    parser.add_argument(
        '-a', '--analysis',
        choices=ANALYSES,
        default='all',
        help='Analysis to run (default: all)'
    )

    parser.add_argument(
        '-t', '--type',
        choices=['auto', 'json', 'csv'],
        default='auto',
        help='Input type (default: auto-detect)'
    )

    parser.add_argument(
        '-f', '--format',
        choices=['terminal', 'json'],
        default='terminal',
        help='Output format (default: terminal)'
    )

    parser.add_argument(
        '-o', '--output',
        type=Path,
        help='Output file (default: stdout)'
    )

    parser.add_argument(
        '--split',
        metavar='A:B',
        type=parse_split,
        action='append',
        help='Node-split this comparison (repeatable; default: every eligible comparison)'
    )

    parser.add_argument(
        '--simulations',
        metavar='K',
        type=int,
        help=f'Monte Carlo iterations for ranking (default: {CONFIG.ranking.n_simulations})'
    )

    parser.add_argument(
        '--seed',
        metavar='S',
        type=int,
        help='Random seed for reproducible rankings'
    )

    parser.add_argument(
        '--lower-is-better',
        action='store_true',
        help='Rank smaller effects first (e.g. adverse event outcomes)'
    )

    parser.add_argument(
        '--reference',
        metavar='TREATMENT',
        help='Reference treatment when ranking from direct evidence'
    )

    parser.add_argument(
        '--no-color',
        action='store_true',
        help='Disable colored output (terminal only)'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Verbose output'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parsed_args = parser.parse_args(args)

    # Determine the effective input source
    input_arg = parsed_args.input

    # Support piped stdin when no input argument is given
    if input_arg is None and not sys.stdin.isatty():
        input_arg = '-'

    if input_arg is None:
        parser.error('the following arguments are required: input (or pipe data via stdin)')

    # Validate file path when not reading from stdin
    if input_arg != '-':
        input_path = Path(input_arg)
        if not input_path.exists():
            print(f"Error: Input file not found: {input_arg}", file=sys.stderr)
            return 1
        if not input_path.is_file():
            print(f"Error: Input is not a file: {input_arg}", file=sys.stderr)
            return 1

    if parsed_args.simulations is not None and parsed_args.simulations < 1:
        print("Error: --simulations must be at least 1", file=sys.stderr)
        return 1

    if parsed_args.verbose:
        _enable_debug_logging()

    try:
        source = 'stdin' if input_arg == '-' else input_arg
        if parsed_args.verbose:
            print(f"Parsing input: {source}", file=sys.stderr)

        data = load_input(input_arg, parsed_args.type)

        if parsed_args.verbose:
            print(f"Found {len(data.comparisons)} comparisons", file=sys.stderr)

        settings = CONFIG.ranking
        if parsed_args.simulations is not None:
            settings = replace(settings, n_simulations=parsed_args.simulations)
        if parsed_args.seed is not None:
            settings = replace(settings, seed=parsed_args.seed)

        if parsed_args.lower_is_better:
            higher_is_better = False
        elif data.higher_is_better is not None:
            higher_is_better = data.higher_is_better
        else:
            higher_is_better = True

        results = run_analyses(
            data,
            analysis=parsed_args.analysis,
            split_edges=parsed_args.split,
            ranker=TreatmentRanker(settings),
            higher_is_better=higher_is_better,
            reference=parsed_args.reference,
            verbose=parsed_args.verbose,
        )

        if parsed_args.format == 'terminal':
            info = _input_info(data, source)
            if parsed_args.output:
                console = Console(file=io.StringIO(), record=True, no_color=True, width=120)
                _print_terminal(results, info, console=console)
                console.save_text(str(parsed_args.output))
                print(f"Report saved to: {parsed_args.output}", file=sys.stderr)
            else:
                _print_terminal(results, info, no_color=parsed_args.no_color)

        elif parsed_args.format == 'json':
            from .output.json_out import JSONOutput

            json_output = JSONOutput()
            content = json_output.to_json(
                geometry=results.geometry,
                consistency=results.consistency,
                ranking=results.ranking,
                scale=data.scale,
                input_info=_input_info(data, source),
                notes=results.notes,
            )

            if parsed_args.output:
                parsed_args.output.write_text(content, encoding='utf-8')
                print(f"Report saved to: {parsed_args.output}", file=sys.stderr)
            else:
                print(content)

        return 0

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except (MemoryError, RecursionError):
        raise
    except Exception as e:
        print(f"Error ({type(e).__name__}): {e}", file=sys.stderr)
        if parsed_args.verbose:
            import traceback
            traceback.print_exc()
        else:
            print("Use --verbose for full traceback", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())

"""Comparison input parser.

Reads pairwise comparison data from JSON or CSV and returns the
structured input consumed by the analysis engine.
"""

from __future__ import annotations

import csv
import io
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..engine.network import Comparison, comparisons_from_dicts
from ..engine.ranker import TreatmentEffect
from ..errors import InvalidNetworkError

# Guard against excessively large inputs
MAX_INPUT_BYTES = 100 * 1024 * 1024  # 100 MB

# Lower-cased header aliases mapped to canonical comparison field names
_CSV_ALIASES = {
    "study": "study_id",
    "study_id": "study_id",
    "trial": "study_id",
    "treatment_a": "treatment_a",
    "treat1": "treatment_a",
    "treatment_b": "treatment_b",
    "treat2": "treatment_b",
    "effect_estimate": "effect_estimate",
    "effect_size": "effect_estimate",
    "effect": "effect_estimate",
    "te": "effect_estimate",
    "standard_error": "standard_error",
    "se": "standard_error",
    "sete": "standard_error",
    "n_a": "n_a",
    "n1": "n_a",
    "n_b": "n_b",
    "n2": "n_b",
}


@dataclass
class NetworkInput:
    """Parsed input for an analysis run."""
    comparisons: list[Comparison] = field(default_factory=list)
    treatments: list[str] = field(default_factory=list)  # declared, may be uncompared
    effects: list[TreatmentEffect] = field(default_factory=list)  # pooled, for ranking
    scale: str | None = None
    higher_is_better: bool | None = None


def detect_input_type(content: str, path: str | None = None) -> str:
    """Detect whether the input is JSON or CSV.

    Args:
        content: Input text
        path: Optional file name; its suffix takes precedence

    Returns:
        'json' or 'csv'
    """
    if path:
        suffix = Path(path).suffix.lower()
        if suffix == '.json':
            return 'json'
        if suffix in ('.csv', '.tsv', '.txt'):
            return 'csv'

    stripped = content.lstrip()
    if stripped.startswith(('{', '[')):
        return 'json'
    return 'csv'


def read_content(input_arg: str | None) -> str:
    """Read input content from a file path, '-' for stdin, or piped stdin.

    Args:
        input_arg: File path string, '-' for explicit stdin, or None to check
                   for piped stdin automatically.

    Returns:
        File content as a string.
    """
    if input_arg == '-' or (input_arg is None and not sys.stdin.isatty()):
        return sys.stdin.read()

    if input_arg is None:
        raise ValueError("input_arg must be a file path or '-' for stdin")

    path = Path(input_arg)

    file_size = path.stat().st_size
    if file_size > MAX_INPUT_BYTES:
        raise ValueError(
            f"Input file exceeds {MAX_INPUT_BYTES // (1024 * 1024)}MB limit "
            f"({file_size // (1024 * 1024)}MB)"
        )

    for encoding in ['utf-8-sig', 'utf-16', 'latin-1']:
        try:
            return path.read_text(encoding=encoding)
        except UnicodeError:
            continue

    return path.read_bytes().decode('utf-8', errors='replace')


def _parse_effects(records: Any) -> list[TreatmentEffect]:
    if not isinstance(records, list):
        raise InvalidNetworkError("'effects' must be a list")

    effects = []
    for i, record in enumerate(records):
        if not isinstance(record, dict) or "treatment" not in record:
            raise InvalidNetworkError(f"Effect {i} must be an object with a 'treatment'")
        try:
            effects.append(TreatmentEffect(
                treatment=str(record["treatment"]).strip(),
                effect=float(record.get("effect", record.get("effect_estimate"))),
                standard_error=float(record.get("standard_error", record.get("se"))),
            ))
        except (TypeError, ValueError):
            raise InvalidNetworkError(
                f"Effect {i} ('{record['treatment']}') needs numeric 'effect' and "
                "'standard_error'"
            ) from None
    return effects


def parse_json(content: str) -> NetworkInput:
    """Parse JSON input.

    Accepts either a bare list of comparison objects or an object with
    ``comparisons`` and optional ``treatments``, ``effects``, ``scale`` and
    ``higher_is_better`` keys.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise InvalidNetworkError(f"Invalid JSON input: {e}") from e

    if isinstance(data, list):
        return NetworkInput(comparisons=comparisons_from_dicts(data))

    if not isinstance(data, dict):
        raise InvalidNetworkError("JSON input must be a list or an object")

    records = data.get("comparisons")
    if not isinstance(records, list):
        raise InvalidNetworkError("JSON input needs a 'comparisons' list")

    treatments = data.get("treatments") or []
    if not isinstance(treatments, list):
        raise InvalidNetworkError("'treatments' must be a list of names")

    higher_is_better = data.get("higher_is_better")
    if higher_is_better is not None and not isinstance(higher_is_better, bool):
        raise InvalidNetworkError("'higher_is_better' must be true or false")

    return NetworkInput(
        comparisons=comparisons_from_dicts(records),
        treatments=[str(t).strip() for t in treatments],
        effects=_parse_effects(data["effects"]) if data.get("effects") else [],
        scale=data.get("scale"),
        higher_is_better=higher_is_better,
    )


def parse_csv(content: str) -> NetworkInput:
    """Parse CSV (or tab-separated) input with one comparison per row."""
    sample = content[:4096]
    delimiter = '\t' if sample.count('\t') > sample.count(',') else ','
    reader = csv.DictReader(io.StringIO(content), delimiter=delimiter)

    if not reader.fieldnames:
        raise InvalidNetworkError("CSV input has no header row")

    mapping = {}
    for name in reader.fieldnames:
        key = name.strip()
        canonical = _CSV_ALIASES.get(key.lower())
        if canonical:
            mapping[name] = canonical

    missing = {"treatment_a", "treatment_b"} - set(mapping.values())
    if missing:
        raise InvalidNetworkError(
            f"CSV input is missing column(s): {', '.join(sorted(missing))}"
        )

    records = []
    for row in reader:
        if not any((value or '').strip() for value in row.values()):
            continue
        records.append({
            canonical: (row.get(name) or '').strip() or None
            for name, canonical in mapping.items()
        })

    return NetworkInput(comparisons=comparisons_from_dicts(records))


def load_input(input_arg: str | None, input_type: str = 'auto') -> NetworkInput:
    """Read and parse an input file (or stdin).

    Args:
        input_arg: File path or '-' for stdin
        input_type: 'json', 'csv' or 'auto' to detect

    Returns:
        NetworkInput
    """
    content = read_content(input_arg)
    if not content.strip():
        raise InvalidNetworkError("Input is empty")

    if input_type == 'auto':
        input_type = detect_input_type(content, None if input_arg == '-' else input_arg)

    if input_type == 'json':
        return parse_json(content)
    return parse_csv(content)

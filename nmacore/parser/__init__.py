"""Parsers for comparison input files."""

from .comparisons import NetworkInput, load_input, parse_csv, parse_json

__all__ = [
    "NetworkInput",
    "load_input",
    "parse_csv",
    "parse_json",
]

"""Output formatters for analysis results."""

from .json_out import JSONOutput
from .terminal import TerminalOutput

__all__ = ["TerminalOutput", "JSONOutput"]

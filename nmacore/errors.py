"""Error taxonomy shared by the analysis engine.

Structural problems with the input raise ``InvalidNetworkError``.
Data-quality issues and untestable properties are not raised; they are
attached to the report that was still produced.
"""

from __future__ import annotations

from dataclasses import dataclass


class InvalidNetworkError(ValueError):
    """The input cannot form a network that any analysis can run on."""


@dataclass(frozen=True)
class DataQualityWarning:
    """Non-fatal problem found in the input data.

    The affected data is excluded or annotated and the analysis continues.
    """
    code: str
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class UntestableConditionNotice:
    """A property the report could not assess from the available evidence."""
    prop: str
    reason: str

    def __str__(self) -> str:
        return f"{self.prop} not assessed: {self.reason}"

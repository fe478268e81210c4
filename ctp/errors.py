from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .configuration import Configuration


class CtpError(Exception):
    """Base class for everything raised by the ctp package."""


class DuplicateNameError(CtpError):
    def __init__(self, kind: str, name: str):
        super().__init__(f"{kind} already defined: {name}")
        self.kind = kind
        self.name = name


class RunNumberError(CtpError):
    pass


class ConfigSyntaxError(CtpError):
    """Fatal structural violation in an explicit-section configuration."""

    def __init__(self, line_no: int, line: str, reason: str):
        super().__init__(f"line {line_no}: {reason}: {line!r}")
        self.line_no = line_no
        self.line = line
        self.reason = reason


@dataclass
class LineIssue:
    line_no: int
    line: str
    reason: str


@dataclass
class ParseResult:
    ok: bool
    config: Optional["Configuration"] = None
    error: Optional[ConfigSyntaxError] = None
    # recoverable problems (inferred dialect only)
    issues: List[LineIssue] = field(default_factory=list)

"""
Parse Report
============
Call-scoped accumulator for errors, warnings and document statistics.

A ParseReport is created at the start of every public ParserEngine call and
passed explicitly to the components that need to record partial losses.
Nothing here is stored on a long-lived object.
"""

from __future__ import annotations

import logging
from typing import Optional

from .models import (
    ErrorEntry,
    ErrorKind,
    Severity,
    WarningEntry,
    WarningKind,
)

logger = logging.getLogger(__name__)


class ParseReport:
    """Errors, warnings and running counters for one parse call."""

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self.errors: list[ErrorEntry] = []
        self.warnings: list[WarningEntry] = []
        self.math_formula_count = 0
        self.image_count = 0
        self.table_count = 0

    def add_error(
        self,
        kind: ErrorKind,
        message: str,
        severity: Severity = Severity.ERROR,
        entry_id: Optional[str] = None,
    ) -> ErrorEntry:
        entry = ErrorEntry(
            id=entry_id or self._next_id("error", len(self.errors)),
            kind=kind,
            message=message,
            severity=severity,
        )
        self.errors.append(entry)
        logger.warning(f"[{entry.id}] {kind.value}: {message}")
        return entry

    def add_warning(
        self,
        kind: WarningKind,
        message: str,
        suggestion: str = "",
        entry_id: Optional[str] = None,
    ) -> WarningEntry:
        entry = WarningEntry(
            id=entry_id or self._next_id("warning", len(self.warnings)),
            kind=kind,
            message=message,
            suggestion=suggestion,
        )
        self.warnings.append(entry)
        logger.debug(f"[{entry.id}] {kind.value}: {message}")
        return entry

    def extend(self, other: "ParseReport"):
        """Fold a sub-report (e.g. one area's) into this one, in order."""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.math_formula_count += other.math_formula_count
        self.image_count += other.image_count
        self.table_count += other.table_count

    def scoped_id(self, name: str) -> str:
        """``name`` qualified with this report's prefix, if any."""
        if self.prefix:
            return f"{self.prefix}_{name}"
        return name

    def _next_id(self, name: str, count: int) -> str:
        if self.prefix:
            return f"{self.prefix}_{name}_{count + 1}"
        return f"{name}_{count + 1}"

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

"""
Structured diagnostics for standardized index computation.

Non-fatal conditions (windows outside the data, missing dates, insufficient
samples, failed fits, rejected goodness of fit) are recorded per date in a
Diagnostics collector instead of aborting the computation. Every recorded
condition is also logged through the module logger.

---
Author: Benny Istanto, GOST/DEC Data Group/The World Bank
---
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Optional

import pandas as pd

from .config import get_logger

_logger = get_logger(__name__)


class DiagnosticKind(Enum):
    """Categories of non-fatal conditions."""

    OUT_OF_RANGE = 'out_of_range'
    MISSING_DATES = 'missing_dates'
    NA_THRESHOLD = 'na_threshold'
    INSUFFICIENT_DATA = 'insufficient_data'
    NEGATIVE_VALUES = 'negative_values'
    FIT_FAILED = 'fit_failed'
    INVALID_LMOMENTS = 'invalid_lmoments'
    GOF_FAILED = 'gof_failed'
    AGGREGATION_FAILED = 'aggregation_failed'
    REJECTED_FIT = 'rejected_fit'
    CDF_FAILED = 'cdf_failed'

    def __str__(self):
        return self.value


# Window-level conditions, logged at debug level
_DEBUG_KINDS = frozenset({
    DiagnosticKind.OUT_OF_RANGE,
    DiagnosticKind.MISSING_DATES,
    DiagnosticKind.NA_THRESHOLD,
})


@dataclass(frozen=True)
class Diagnostic:
    """A single recorded condition."""

    kind: DiagnosticKind
    message: str
    date: Optional[pd.Timestamp] = None

    def __str__(self):
        if self.date is None:
            return f"[{self.kind}] {self.message}"
        return f"[{self.kind}] {self.date:%Y-%m-%d}: {self.message}"


class Diagnostics:
    """
    Ordered collector of Diagnostic records.

    Collectors are cheap to create; each concurrent task should own one and
    the results are merged afterwards with extend().
    """

    def __init__(self, records: Optional[Iterable[Diagnostic]] = None):
        self._records: List[Diagnostic] = list(records) if records is not None else []

    def add(
        self,
        kind: DiagnosticKind,
        message: str,
        date: Optional[pd.Timestamp] = None
    ) -> Diagnostic:
        """
        Record a condition and log it.

        :param kind: category of the condition
        :param message: human-readable description
        :param date: date the condition applies to, if any
        :return: the recorded Diagnostic
        """
        record = Diagnostic(kind, message, None if date is None else pd.Timestamp(date))
        self._records.append(record)
        if kind in _DEBUG_KINDS:
            _logger.debug(str(record))
        else:
            _logger.warning(str(record))
        return record

    def extend(self, other: Iterable[Diagnostic]) -> None:
        """Append records from another collector without logging them again."""
        self._records.extend(other)

    def of_kind(self, kind: DiagnosticKind) -> List[Diagnostic]:
        return [r for r in self._records if r.kind == kind]

    def has(self, kind: DiagnosticKind) -> bool:
        return any(r.kind == kind for r in self._records)

    def to_list(self) -> List[Diagnostic]:
        return list(self._records)

    def to_frame(self) -> pd.DataFrame:
        """Diagnostics as a DataFrame with columns kind, date and message."""
        return pd.DataFrame(
            [(str(r.kind), r.date, r.message) for r in self._records],
            columns=['kind', 'date', 'message'],
        )

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __bool__(self) -> bool:
        return bool(self._records)

    def __repr__(self):
        return f"Diagnostics({len(self._records)} records)"


def ensure_diagnostics(diagnostics: Optional[Diagnostics]) -> Diagnostics:
    """Return the given collector or a fresh one."""
    return diagnostics if diagnostics is not None else Diagnostics()

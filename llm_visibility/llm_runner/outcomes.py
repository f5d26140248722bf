"""
Per-unit outcomes for best-effort batch processing.

Query runs and answer writes are allowed to fail one by one without stopping
the batch. Instead of only logging those failures, every unit of work records
an outcome in a BatchReport:

    succeeded: answers written (possibly with a degraded extraction)
    failed:    runs dropped, with the reason

Example:
    >>> report = BatchReport()
    >>> report.record_failure("q1", FailureKind.COMPLETION_FAILED, "timeout", run_index=3)
    >>> report.record_success("q1", run_index=1, answer_id="a1")
    >>> report.summary()
    {'succeeded': 1, 'failed': 1, 'degraded': 0, 'by_kind': {'completion_failed': 1}}
"""

import threading
from collections import Counter
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class FailureKind(str, Enum):
    """Why a unit of work produced no answer."""

    COMPLETION_FAILED = "completion_failed"
    INVALID_PATH = "invalid_path"
    WRITE_FAILED = "write_failed"


@dataclass(frozen=True)
class UnitOutcome:
    """
    Result of one unit of work.

    Attributes:
        query_id: Query the unit belongs to
        run_index: 1-based run number, None for query-level outcomes
            (e.g. a skipped legacy path)
        kind: Failure reason, None on success
        error: Failure message, None on success
        answer_id: Id of the written answer on success
        extraction_error: Set when the answer was written with an empty
            competitor list because extraction failed
        query_path: Storage path of the query document
    """

    query_id: str
    run_index: int | None = None
    kind: FailureKind | None = None
    error: str | None = None
    answer_id: str | None = None
    extraction_error: str | None = None
    query_path: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind is None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value if self.kind else None
        return data


@dataclass
class BatchReport:
    """
    Outcomes collected during one pipeline invocation.

    Safe to share between concurrent tasks of one event loop, and between
    threads (appends are guarded by a lock).
    """

    succeeded: list[UnitOutcome] = field(default_factory=list)
    failed: list[UnitOutcome] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def record_success(
        self,
        query_id: str,
        run_index: int,
        answer_id: str,
        extraction_error: str | None = None,
        query_path: str | None = None,
    ) -> UnitOutcome:
        outcome = UnitOutcome(
            query_id=query_id,
            run_index=run_index,
            answer_id=answer_id,
            extraction_error=extraction_error,
            query_path=query_path,
        )
        with self._lock:
            self.succeeded.append(outcome)
        return outcome

    def record_failure(
        self,
        query_id: str,
        kind: FailureKind,
        error: str,
        run_index: int | None = None,
        query_path: str | None = None,
    ) -> UnitOutcome:
        outcome = UnitOutcome(
            query_id=query_id,
            run_index=run_index,
            kind=kind,
            error=error,
            query_path=query_path,
        )
        with self._lock:
            self.failed.append(outcome)
        return outcome

    @property
    def degraded(self) -> list[UnitOutcome]:
        """Successes whose competitor extraction failed."""
        return [o for o in self.succeeded if o.extraction_error is not None]

    def failures_of(self, kind: FailureKind) -> list[UnitOutcome]:
        return [o for o in self.failed if o.kind == kind]

    def summary(self) -> dict[str, Any]:
        by_kind = Counter(o.kind.value for o in self.failed if o.kind)
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "degraded": len(self.degraded),
            "by_kind": dict(by_kind),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": [o.to_dict() for o in self.succeeded],
            "failed": [o.to_dict() for o in self.failed],
        }

"""
Result Aggregation.

Merges per-shard outcomes into one summary and the process exit status.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from loguru import logger

from flowshard.executor.types import ShardOutcome, TestExecutionSummary


def merge_summaries(
    summaries: Iterable[TestExecutionSummary],
) -> Optional[TestExecutionSummary]:
    """
    Merge summaries into one.

    Suites are concatenated, ``passed`` is AND-ed and the counts are summed.
    Returns None when there is nothing to merge.
    """
    summaries = list(summaries)
    if not summaries:
        return None

    suites = []
    for summary in summaries:
        suites.extend(summary.suites)

    return TestExecutionSummary(
        passed=all(s.passed for s in summaries),
        suites=suites,
        passed_count=sum(s.passed_count or 0 for s in summaries),
        total_tests=sum(s.total_tests or 0 for s in summaries),
    )


@dataclass
class AggregateResult:
    """
    Aggregated outcome of a run.

    Attributes:
        passed: Flows that passed, across shards.
        total: Flows that ran, across shards.
        summary: Merged structured summary, None if no shard produced one.
    """
    passed: int = 0
    total: int = 0
    summary: Optional[TestExecutionSummary] = None

    @property
    def success(self) -> bool:
        return self.passed == self.total

    @property
    def exit_code(self) -> int:
        """0 when every flow of every shard passed, 1 otherwise."""
        return 0 if self.success else 1

    def add(self, outcome: ShardOutcome) -> "AggregateResult":
        """Fold one more shard outcome in, returning a new result."""
        summaries = [s for s in (self.summary, outcome.summary) if s is not None]
        return AggregateResult(
            passed=self.passed + (outcome.passed_count or 0),
            total=self.total + (outcome.total_count or 0),
            summary=merge_summaries(summaries),
        )

    def combine(self, other: "AggregateResult") -> "AggregateResult":
        """Merge two aggregates."""
        summaries = [s for s in (self.summary, other.summary) if s is not None]
        return AggregateResult(
            passed=self.passed + other.passed,
            total=self.total + other.total,
            summary=merge_summaries(summaries),
        )

    def summary_line(self) -> str:
        return f"Passed: {self.passed}/{self.total}"


class ResultAggregator:
    """Merges shard outcomes."""

    def merge(self, outcomes: List[ShardOutcome]) -> AggregateResult:
        """
        Merge shard outcomes.

        Args:
            outcomes: Outcomes in shard order.

        Returns:
            AggregateResult with summed counts and the merged summary.
        """
        result = AggregateResult(
            passed=sum(o.passed_count or 0 for o in outcomes),
            total=sum(o.total_count or 0 for o in outcomes),
            summary=merge_summaries(o.summary for o in outcomes if o.summary is not None),
        )
        logger.debug(f"Merged {len(outcomes)} shard outcome(s): {result.summary_line()}")
        return result

    @staticmethod
    def shard_lines(result: AggregateResult, outcomes: List[ShardOutcome]) -> List[str]:
        """Lines of the per-shard box shown after a sharded run."""
        lines = [result.summary_line()]
        for outcome in outcomes:
            summary = outcome.summary
            if summary is None:
                continue
            device = summary.suites[0].device_name if summary.suites else None
            lines.append(
                f"[ {device} ] - {summary.passed_count or 0}/{summary.total_tests or 0}"
            )
        return lines


def box(lines: List[str]) -> str:
    """Draw a plain text box around lines."""
    width = max((len(line) for line in lines), default=0)
    top = "┌" + "─" * (width + 2) + "┐"
    bottom = "└" + "─" * (width + 2) + "┘"
    body = [f"│ {line.ljust(width)} │" for line in lines]
    return "\n".join([top, *body, bottom])

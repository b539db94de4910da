"""Append-only ledger of per-step decisions."""

from collections.abc import Iterator

from buffett_mcp.killchain.errors import SequenceError
from buffett_mcp.killchain.models import STEP_COUNT, StepOutcome


class OutcomeLedger:
    """
    Ordered step outcomes. Position ``i`` holds the decision for step ``i + 1``.

    Entries are never edited in place. ``truncate_to`` exists for re-deciding an
    earlier step: everything after the re-decided step must go with it.
    """

    def __init__(self) -> None:
        self._outcomes: list[StepOutcome] = []

    def record(self, outcome: StepOutcome) -> int:
        """
        Append the outcome for the next undecided step.

        Returns:
            The step number the outcome was recorded for

        Raises:
            SequenceError: If all steps are already decided
        """
        if len(self._outcomes) >= STEP_COUNT:
            raise SequenceError(f"All {STEP_COUNT} steps are already decided")
        self._outcomes.append(outcome)
        return len(self._outcomes)

    def truncate_to(self, n: int) -> None:
        """Keep only the first ``n`` outcomes."""
        if n < 0:
            raise ValueError("n must be >= 0")
        del self._outcomes[n:]

    def clear(self) -> None:
        self._outcomes.clear()

    def outcome_for(self, step: int) -> StepOutcome | None:
        if 1 <= step <= len(self._outcomes):
            return self._outcomes[step - 1]
        return None

    @property
    def is_complete(self) -> bool:
        return len(self._outcomes) == STEP_COUNT

    def snapshot(self) -> tuple[StepOutcome, ...]:
        return tuple(self._outcomes)

    def __len__(self) -> int:
        return len(self._outcomes)

    def __iter__(self) -> Iterator[StepOutcome]:
        return iter(tuple(self._outcomes))

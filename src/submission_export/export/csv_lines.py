"""
Rows produced for one output table, merged across submissions.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional


@dataclass(frozen=True)
class CsvLine:
    """One formatted row plus the submission it came from."""
    instance_id: str
    submission_date: datetime
    line: str


class CsvLines:
    """Rows for the table owned by the schema node with FQN ``model_fqn``.

    Tracks the row with the latest submission date, which is used to
    remember where an export stopped.
    """

    def __init__(self, model_fqn: Optional[str], lines: List[CsvLine], last_line: Optional[CsvLine] = None):
        self.model_fqn = model_fqn
        self.lines = lines
        self.last_line = last_line if last_line is not None else (lines[-1] if lines else None)

    @classmethod
    def empty(cls) -> "CsvLines":
        return cls(None, [])

    @classmethod
    def of(cls, model_fqn: str, instance_id: str, submission_date: datetime, line: str) -> "CsvLines":
        return cls(model_fqn, [CsvLine(instance_id, submission_date, line)])

    @classmethod
    def of_many(cls, model_fqn: str, instance_id: str, submission_date: datetime, lines: Iterable[str]) -> "CsvLines":
        return cls(model_fqn, [CsvLine(instance_id, submission_date, line) for line in lines])

    def is_empty(self) -> bool:
        return not self.lines

    def merge(self, other: "CsvLines") -> "CsvLines":
        """Concatenate two fragments of the same table.

        Raises:
            ValueError: If neither fragment has an FQN or the FQNs differ
        """
        if self.model_fqn is None and other.model_fqn is None:
            raise ValueError("Can't merge CsvLines without a model FQN")
        if self.model_fqn is not None and other.model_fqn is not None and self.model_fqn != other.model_fqn:
            raise ValueError(f"Can't merge CsvLines of {self.model_fqn!r} with CsvLines of {other.model_fqn!r}")

        return CsvLines(
            self.model_fqn if self.model_fqn is not None else other.model_fqn,
            self.lines + other.lines,
            _latest(self.last_line, other.last_line),
        )

    def sorted(self) -> List[str]:
        """Rows ordered by submission date (instance ID breaks ties)."""
        ordered = sorted(self.lines, key=lambda line: (line.submission_date, line.instance_id))
        return [line.line for line in ordered]

    def unsorted(self) -> List[str]:
        return [line.line for line in self.lines]

    def __len__(self) -> int:
        return len(self.lines)


def _latest(a: Optional[CsvLine], b: Optional[CsvLine]) -> Optional[CsvLine]:
    if a is None:
        return b
    if b is None:
        return a
    return b if b.submission_date > a.submission_date else a

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

PRIMARY_KEYWORDS = ("Given", "When", "Then")
CONJUNCTION_KEYWORDS = ("And", "But")
STEP_KEYWORDS = PRIMARY_KEYWORDS + CONJUNCTION_KEYWORDS


@dataclass(frozen=True)
class DataTable:
    """Table payload attached to a step, first row is the heading row"""
    headings: Tuple[str, ...]
    rows: Tuple[Tuple[str, ...], ...] = ()

    def as_dicts(self) -> List[Dict[str, str]]:
        return [dict(zip(self.headings, row)) for row in self.rows]


@dataclass(frozen=True)
class Step:
    keyword: str
    text: str
    line: int
    data_table: Optional[DataTable] = None
    doc_string: Optional[str] = None

    @property
    def is_conjunction(self) -> bool:
        return self.keyword in CONJUNCTION_KEYWORDS

    def __str__(self) -> str:
        return f"{self.keyword} {self.text}"


@dataclass(frozen=True)
class Scenario:
    name: str
    steps: Tuple[Step, ...] = ()
    tags: Tuple[str, ...] = ()
    line: int = 0


@dataclass(frozen=True)
class Feature:
    name: str
    description: Optional[str] = None
    scenarios: Tuple[Scenario, ...] = ()
    background: Tuple[Step, ...] = ()
    tags: Tuple[str, ...] = ()
    file: Optional[str] = None

    @property
    def step_count(self) -> int:
        return sum(len(scenario.steps) for scenario in self.scenarios)


def resolve_keyword(steps, index: int) -> Optional[str]:
    """
    Resolve the primary keyword a step is matched under.

    And/But take the nearest preceding primary keyword. Returns None when a
    conjunction has nothing to inherit from.
    """
    for step in reversed(steps[:index + 1]):
        if step.keyword in PRIMARY_KEYWORDS:
            return step.keyword
    return None


def resolve_keywords(steps) -> List[Optional[str]]:
    return [resolve_keyword(steps, i) for i in range(len(steps))]

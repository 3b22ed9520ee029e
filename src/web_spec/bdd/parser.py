import re
import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..core.exceptions import ParseError
from .model import DataTable, Feature, Scenario, Step, STEP_KEYWORDS, PRIMARY_KEYWORDS

logger = logging.getLogger(__name__)

_HEADER_RE = re.compile(r'^(Feature|Background|Scenario|Example):\s*(.*)$')
_STEP_RE = re.compile(r'^(%s)\s+(.+)$' % '|'.join(STEP_KEYWORDS))
_DOC_STRING_DELIMITERS = ('"""', '```')


class _ScenarioBuilder:
    def __init__(self, name: str, tags: List[str], line: int):
        self.name = name
        self.tags = tags
        self.line = line
        self.steps: List[dict] = []


class FeatureParser:
    """
    Line-oriented parser for scenario files.

    Recognizes a Feature header, free-text description lines, an optional
    Background, Scenario headers, tag lines, step lines and the data tables or
    doc-strings that trail a step. Performs no step matching.
    """

    def parse(self, text: str, path: Optional[str] = None) -> Feature:
        self._path = path
        lines = text.splitlines()

        feature_name = None
        feature_tags: List[str] = []
        description: List[str] = []
        background: Optional[_ScenarioBuilder] = None
        scenarios: List[_ScenarioBuilder] = []
        current: Optional[_ScenarioBuilder] = None
        pending_tags: List[str] = []

        i = 0
        while i < len(lines):
            line_no = i + 1
            raw = lines[i]
            stripped = raw.strip()
            i += 1

            if not stripped or stripped.startswith('#'):
                continue

            if stripped.startswith('@'):
                pending_tags.extend(tag for tag in stripped.split() if tag.startswith('@'))
                continue

            header = _HEADER_RE.match(stripped)
            if header:
                kind, title = header.group(1), header.group(2).strip()
                if kind == 'Feature':
                    if feature_name is not None:
                        self._fail(line_no, "Duplicate Feature header")
                    feature_name = title
                    feature_tags, pending_tags = pending_tags, []
                    continue
                if feature_name is None:
                    self._fail(line_no, "Missing Feature header")
                if kind == 'Background':
                    if background is not None or scenarios:
                        self._fail(line_no, "Background must appear once, before the first Scenario")
                    background = _ScenarioBuilder(title, [], line_no)
                    current = background
                else:
                    current = _ScenarioBuilder(title, pending_tags, line_no)
                    scenarios.append(current)
                pending_tags = []
                continue

            if feature_name is None:
                self._fail(line_no, "Missing Feature header")

            if stripped.startswith('|'):
                if current is None or not current.steps:
                    self._fail(line_no, "Data table is not attached to a step")
                i = self._read_table(lines, i - 1, current.steps[-1])
                continue

            if stripped.startswith(_DOC_STRING_DELIMITERS):
                if current is None or not current.steps:
                    self._fail(line_no, "Doc string is not attached to a step")
                i = self._read_doc_string(lines, i - 1, current.steps[-1])
                continue

            if current is None:
                description.append(stripped)
                continue

            step = _STEP_RE.match(stripped)
            if not step:
                self._fail(line_no, f"Unrecognized step keyword: {stripped.split()[0]}")

            keyword, step_text = step.group(1), step.group(2).strip()
            if keyword not in PRIMARY_KEYWORDS and not any(
                    s['keyword'] in PRIMARY_KEYWORDS for s in self._inherited(background, current)):
                self._fail(line_no, f"'{keyword}' has no preceding Given/When/Then to inherit from")

            current.steps.append({'keyword': keyword, 'text': step_text, 'line': line_no,
                                  'table': None, 'doc_string': None})

        if feature_name is None:
            self._fail(1, "Missing Feature header")

        background_steps = tuple(self._build_step(s) for s in background.steps) if background else ()
        feature = Feature(
            name=feature_name,
            description="\n".join(description) or None,
            scenarios=tuple(
                Scenario(
                    name=s.name,
                    steps=background_steps + tuple(self._build_step(step) for step in s.steps),
                    tags=tuple(s.tags),
                    line=s.line,
                )
                for s in scenarios
            ),
            background=background_steps,
            tags=tuple(feature_tags),
            file=path,
        )
        logger.debug(f"Parsed feature '{feature.name}' with {len(feature.scenarios)} scenario(s)")
        return feature

    def parse_file(self, path: Union[str, Path]) -> Feature:
        path = Path(path)
        with open(path, 'r', encoding='utf-8') as f:
            content = f.read()
        return self.parse(content, path=str(path))

    @staticmethod
    def _inherited(background: Optional[_ScenarioBuilder], current: _ScenarioBuilder) -> List[dict]:
        # A scenario's first And/But may inherit from the Background
        if background is not None and current is not background:
            return background.steps + current.steps
        return current.steps

    def _read_table(self, lines: List[str], start: int, step: dict) -> int:
        rows: List[Tuple[str, ...]] = []
        i = start
        while i < len(lines) and lines[i].strip().startswith('|'):
            stripped = lines[i].strip()
            if not stripped.endswith('|') or len(stripped) < 2:
                self._fail(i + 1, "Malformed data table row")
            cells = tuple(cell.strip() for cell in stripped[1:-1].split('|'))
            if rows and len(cells) != len(rows[0]):
                self._fail(
                    i + 1,
                    f"Inconsistent data table: expected {len(rows[0])} columns, found {len(cells)}"
                )
            rows.append(cells)
            i += 1

        if step['table'] is not None or step['doc_string'] is not None:
            self._fail(start + 1, "Step already has a payload")
        step['table'] = DataTable(headings=rows[0], rows=tuple(rows[1:]))
        return i

    def _read_doc_string(self, lines: List[str], start: int, step: dict) -> int:
        opening = lines[start]
        indent = len(opening) - len(opening.lstrip())
        delimiter = opening.strip()[:3]
        body: List[str] = []
        i = start + 1
        while i < len(lines):
            if lines[i].strip() == delimiter:
                if step['table'] is not None or step['doc_string'] is not None:
                    self._fail(start + 1, "Step already has a payload")
                step['doc_string'] = "\n".join(body)
                return i + 1
            line = lines[i]
            # Strip the delimiter's indentation, never more than the line has
            leading = len(line) - len(line.lstrip())
            body.append(line[min(indent, leading):])
            i += 1
        self._fail(start + 1, "Unterminated doc string")

    @staticmethod
    def _build_step(data: dict) -> Step:
        return Step(
            keyword=data['keyword'],
            text=data['text'],
            line=data['line'],
            data_table=data['table'],
            doc_string=data['doc_string'],
        )

    def _fail(self, line: int, reason: str):
        raise ParseError(line, reason, path=self._path)


def parse(text: str, path: Optional[str] = None) -> Feature:
    """Parse scenario-file text into a Feature"""
    return FeatureParser().parse(text, path=path)


def parse_file(path: Union[str, Path]) -> Feature:
    return FeatureParser().parse_file(path)

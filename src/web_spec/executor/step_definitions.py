import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Pattern, Tuple

from ..core.exceptions import RegistryError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"

_PLACEHOLDER_RE = re.compile(r'\{(?:(\w+):)?(string|int|float)\}')

_PLACEHOLDER_REGEX = {
    'string': r'"(?P<{name}>[^"]*)"',
    'int': r'(?P<{name}>-?\d+)',
    'float': r'(?P<{name}>-?\d+(?:\.\d+)?)',
}

_CONVERTERS: Dict[str, Callable[[str], Any]] = {
    'string': str,
    'int': int,
    'float': float,
}


@dataclass(frozen=True)
class ParameterSpec:
    """Typed placeholder extracted from a step template"""
    name: str
    type: str

    def render(self, value: Any) -> str:
        if self.type == 'string':
            return f'"{value}"'
        if self.type == 'float':
            text = repr(float(value))
            return text[:-2] if text.endswith('.0') else text
        return str(int(value))


def compile_template(template: str) -> Tuple[Pattern, List[ParameterSpec]]:
    """
    Compile a step template into an anchored regex.

    Literal text matches case-insensitively and whitespace runs match any
    whitespace. Placeholders are {name:type} or a bare {type}.
    """
    parts = []
    parameters: List[ParameterSpec] = []
    position = 0

    for placeholder in _PLACEHOLDER_RE.finditer(template):
        parts.append(_literal(template[position:placeholder.start()]))
        name = placeholder.group(1) or f"arg{len(parameters) + 1}"
        if any(p.name == name for p in parameters):
            raise RegistryError(f"Duplicate placeholder '{name}' in template: {template}")
        param_type = placeholder.group(2)
        parameters.append(ParameterSpec(name=name, type=param_type))
        parts.append(_PLACEHOLDER_REGEX[param_type].format(name=name))
        position = placeholder.end()

    parts.append(_literal(template[position:]))
    return re.compile('^' + ''.join(parts) + '$', re.IGNORECASE), parameters


def _literal(text: str) -> str:
    return ''.join(r'\s+' if token.isspace() else re.escape(token)
                   for token in re.split(r'(\s+)', text) if token)


@dataclass
class StepPattern:
    """A registered step: stable id, template, category and its handler"""
    id: str
    template: str
    category: str = "Other"
    handler: Optional[Callable] = None
    description: str = ""
    examples: List[str] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)
    keywords: Optional[FrozenSet[str]] = None  # None = any keyword

    def __post_init__(self):
        self.regex, self.parameters = compile_template(self.template)
        self.alias_regexes: List[Pattern] = []
        for alias in self.aliases:
            regex, params = compile_template(alias)
            if set(params) != set(self.parameters):
                raise RegistryError(
                    f"Alias '{alias}' of step '{self.id}' must declare the same placeholders as its template"
                )
            self.alias_regexes.append(regex)
        if self.keywords is not None:
            self.keywords = frozenset(k.lower() for k in self.keywords)

    def accepts_keyword(self, keyword: Optional[str]) -> bool:
        return self.keywords is None or keyword is None or keyword.lower() in self.keywords

    def match(self, step_text: str) -> Optional[Dict[str, Any]]:
        """Return converted parameters when the text structurally matches"""
        text = step_text.strip()
        for regex in [self.regex] + self.alias_regexes:
            found = regex.match(text)
            if found:
                return {
                    param.name: _CONVERTERS[param.type](found.group(param.name))
                    for param in self.parameters
                }
        return None

    def render(self, params: Dict[str, Any]) -> str:
        """Re-render the primary template with parameter values"""
        specs = iter(self.parameters)

        def substitute(_placeholder):
            param = next(specs)
            if param.name not in params:
                raise KeyError(f"Missing parameter '{param.name}' for step '{self.id}'")
            return param.render(params[param.name])

        return _PLACEHOLDER_RE.sub(substitute, self.template)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'pattern': self.template,
            'aliases': list(self.aliases),
            'category': self.category,
            'description': self.description,
            'keywords': sorted(self.keywords) if self.keywords else [],
            'parameters': [
                {'name': p.name, 'type': p.type, 'required': True}
                for p in self.parameters
            ],
            'examples': list(self.examples),
        }


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching step text: a pattern plus parameters, or no match"""
    pattern: Optional[StepPattern] = None
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def matched(self) -> bool:
        return self.pattern is not None

    @property
    def pattern_id(self) -> Optional[str]:
        return self.pattern.id if self.pattern else None

    def __bool__(self) -> bool:
        return self.matched


NO_MATCH = MatchResult()


class StepDefinitionRegistry:
    """
    Catalog of step patterns.

    Patterns are grouped by category in the order categories are first
    registered. Matching tries categories in that order and patterns within a
    category in registration order; the first structural match wins. Once
    frozen, the registry is read-only and safe to share between threads.
    """

    def __init__(self):
        self._patterns: Dict[str, StepPattern] = {}
        self._by_category: Dict[str, List[StepPattern]] = {}
        self._frozen = False

    def register(self, pattern: StepPattern) -> StepPattern:
        """Add a step pattern to the registry"""
        if self._frozen:
            raise RegistryError(f"Registry is frozen, cannot register '{pattern.id}'")
        if pattern.id in self._patterns:
            raise RegistryError(f"Step pattern '{pattern.id}' is already registered")

        self._patterns[pattern.id] = pattern
        self._by_category.setdefault(pattern.category, []).append(pattern)
        logger.debug(f"Registered step: [{pattern.category}] {pattern.id} -> {pattern.template}")
        return pattern

    def add_definition(self, template: str, function: Callable, step_id: Optional[str] = None,
                       category: str = "Other", description: str = "",
                       examples: Optional[List[str]] = None, aliases: Optional[List[str]] = None,
                       keywords: Optional[List[str]] = None) -> StepPattern:
        """Build a StepPattern around a handler function and register it"""
        return self.register(StepPattern(
            id=step_id or function.__name__,
            template=template,
            category=category,
            handler=function,
            description=description or (function.__doc__ or "").strip().split("\n")[0],
            examples=list(examples or []),
            aliases=list(aliases or []),
            keywords=frozenset(keywords) if keywords else None,
        ))

    def _decorator(self, template: str, keywords: Optional[List[str]], **options):
        def decorator(func):
            self.add_definition(template, func, keywords=keywords, **options)
            return func

        return decorator

    def given(self, template: str, **options):
        """Decorator for Given steps"""
        return self._decorator(template, ['given'], **options)

    def when(self, template: str, **options):
        """Decorator for When steps"""
        return self._decorator(template, ['when'], **options)

    def then(self, template: str, **options):
        """Decorator for Then steps"""
        return self._decorator(template, ['then'], **options)

    def step(self, template: str, **options):
        """Decorator for any step type"""
        return self._decorator(template, None, **options)

    def freeze(self) -> "StepDefinitionRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def match(self, step_text: str, keyword: Optional[str] = None) -> MatchResult:
        """Find the first pattern that structurally matches the step text"""
        for category, patterns in self._by_category.items():
            for pattern in patterns:
                if not pattern.accepts_keyword(keyword):
                    continue
                params = pattern.match(step_text)
                if params is not None:
                    logger.debug(f"Matched '{step_text}' -> {pattern.id} {params}")
                    return MatchResult(pattern=pattern, params=params)

        logger.debug(f"No step definition found for: {keyword or ''} {step_text}".strip())
        return NO_MATCH

    def render(self, pattern_id: str, params: Dict[str, Any]) -> str:
        return self.get(pattern_id).render(params)

    def get(self, pattern_id: str) -> StepPattern:
        try:
            return self._patterns[pattern_id]
        except KeyError:
            raise RegistryError(f"Unknown step pattern: {pattern_id}") from None

    def __contains__(self, pattern_id: str) -> bool:
        return pattern_id in self._patterns

    def __len__(self) -> int:
        return len(self._patterns)

    def all_patterns(self) -> List[StepPattern]:
        """All patterns, category group by category group"""
        return [p for patterns in self._by_category.values() for p in patterns]

    def categories(self) -> List[str]:
        return sorted(self._by_category)

    def by_category(self, name: str) -> List[StepPattern]:
        for category, patterns in self._by_category.items():
            if category.lower() == name.lower():
                return list(patterns)
        return []

    def search(self, query: str, category: Optional[str] = None) -> List[StepPattern]:
        """Case-insensitive substring search over pattern text, description, ids and examples"""
        query = query.lower()
        candidates = self.by_category(category) if category else self.all_patterns()
        results = []
        for pattern in candidates:
            haystack = [pattern.id, pattern.template, pattern.description, pattern.category]
            haystack.extend(pattern.aliases)
            haystack.extend(pattern.examples)
            if any(query in text.lower() for text in haystack):
                results.append(pattern)
        return results

    def suggest(self, step_text: str, limit: int = 3) -> List[str]:
        """Pattern ids that share the most words with the step text"""
        words = {w.lower() for w in re.findall(r'\w+', step_text)}
        scored = []
        for pattern in self.all_patterns():
            pattern_words = {w.lower() for w in re.findall(r'\w+', pattern.template + ' ' + pattern.description)}
            pattern_words -= {'string', 'int', 'float'}
            overlap = len(words & pattern_words)
            if overlap >= 2:
                scored.append((overlap, pattern.id))
        scored.sort(key=lambda item: -item[0])
        return [pattern_id for _, pattern_id in scored[:limit]]

    def list_definitions(self) -> List[Dict[str, Any]]:
        """List all registered step definitions"""
        return [
            {
                'id': pattern.id,
                'category': pattern.category,
                'pattern': pattern.template,
                'description': pattern.description,
                'function': pattern.handler.__name__ if pattern.handler else None,
            }
            for pattern in self.all_patterns()
        ]

    def export_schema(self) -> Dict[str, Any]:
        """Structured description of every pattern, the contract client integrations rely on"""
        steps = sorted(self.all_patterns(), key=lambda p: (p.category, p.id))
        return {
            'metadata': {
                'version': SCHEMA_VERSION,
                'generated_at': datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ'),
                'total_steps': len(self._patterns),
                'total_categories': len(self._by_category),
            },
            'categories': self.categories(),
            'steps': [pattern.to_dict() for pattern in steps],
        }

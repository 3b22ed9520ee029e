from .model import Feature, Scenario, Step, DataTable, resolve_keyword, resolve_keywords
from .parser import FeatureParser, parse, parse_file

__all__ = [
    "Feature",
    "Scenario",
    "Step",
    "DataTable",
    "FeatureParser",
    "parse",
    "parse_file",
    "resolve_keyword",
    "resolve_keywords",
]

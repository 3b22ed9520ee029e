import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml
from jinja2 import Template

from ..core.base import Status
from .batch import BatchSummary
from .comparison import ComparisonReport
from .executor import ValidationReport
from .result import FeatureResult
from .step_definitions import StepPattern

logger = logging.getLogger(__name__)

FORMATS = ('text', 'json', 'yaml', 'tap', 'html')

_EXTENSIONS = {'text': 'txt', 'json': 'json', 'yaml': 'yaml', 'tap': 'tap', 'html': 'html'}

SYMBOLS = {
    Status.PASSED.value: '✓',
    Status.FAILED.value: '✗',
    Status.SKIPPED.value: '⊘',
    Status.PENDING.value: '?',
}

FEATURE_TEXT = """=== Execution Report ===

Feature: {{ result.name }}
{% if result.file %}
File: {{ result.file }}
{% endif %}
{% if result.description %}
Description: {{ result.description }}
{% endif %}
Status: {{ result.status.value }}
Duration: {{ result.duration_ms }}ms
Timestamp: {{ result.timestamp }}

Scenarios: {{ result.scenarios|length }}
{% for scenario in result.scenarios %}

  {{ loop.index }}. {{ scenario.name }} [{{ scenario.status.value }}]
     Duration: {{ scenario.duration_ms }}ms
{% for step in scenario.steps %}
     {{ symbols[step.status.value] }} {{ loop.index }}. {{ step.keyword }} {{ step.text }}
{% if step.error %}
        Error [{{ step.error.kind.value }}]: {{ step.error.message }}
{% if step.error.suggestions %}
        Suggestions:
{% for suggestion in step.error.suggestions %}
          - {{ suggestion }}
{% endfor %}
{% endif %}
{% endif %}
{% if step.output %}
        Output: {{ step.output }}
{% endif %}
{% endfor %}
{% endfor %}

=== Summary ===
Scenarios: {{ summary.passed_scenarios }} passed, {{ summary.failed_scenarios }} failed, \
{{ summary.skipped_scenarios }} skipped (total: {{ summary.total_scenarios }})
Steps: {{ summary.passed_steps }} passed, {{ summary.failed_steps }} failed, \
{{ summary.skipped_steps }} skipped (total: {{ summary.total_steps }})
"""

VALIDATION_TEXT = """{% if report.valid %}
✓ Feature '{{ report.feature }}' is valid ({{ report.steps_checked }} steps checked)
{% else %}
✗ Feature '{{ report.feature }}' has {{ report.errors|length }} unknown step(s) \
({{ report.steps_checked }} steps checked)
{% for error in report.errors %}
  line {{ error.line }}: {{ error.keyword }} {{ error.text }}  (scenario: {{ error.scenario }})
{% for suggestion in error.suggestions %}
      - {{ suggestion }}
{% endfor %}
{% endfor %}
{% endif %}
{% if report.warnings %}
Warnings:
{% for warning in report.warnings %}
  - {{ warning }}
{% endfor %}
{% endif %}
"""

BATCH_TEXT = """=== Batch Report ===

Features: {{ data.total_features }} total, {{ data.passed_features }} passed, {{ data.failed_features }} failed, \
{{ data.error_features }} errors, {{ data.not_run_features }} not run
Scenarios: {{ data.summary.passed_scenarios }} passed, {{ data.summary.failed_scenarios }} failed, \
{{ data.summary.skipped_scenarios }} skipped (total: {{ data.summary.total_scenarios }})
Steps: {{ data.summary.passed_steps }} passed, {{ data.summary.failed_steps }} failed, \
{{ data.summary.skipped_steps }} skipped (total: {{ data.summary.total_steps }})
Duration: {{ data.total_duration_ms }}ms

Results:
{% for unit in data.features %}
  {{ symbols.get(unit.status, '-') }} {{ unit.path }} ({{ unit.name }}) [{{ unit.status }}] {{ unit.duration_ms }}ms\
{% if unit.status in ('passed', 'failed') %}, {{ unit.scenarios_passed }} passed, {{ unit.scenarios_failed }} failed{% endif %}

{% endfor %}
{% if data.errors %}

Errors:
{% for error in data.errors %}
  {{ error.path }}: [{{ error.kind }}] {{ error.message }}
{% endfor %}
{% endif %}
"""

COMPARISON_TEXT = """=== Comparison Report ===

Status: {{ data.status|upper }}
Baseline: {{ data.baseline.feature }} ({{ data.baseline.timestamp }}) {{ data.baseline.status }}, \
{{ data.baseline.duration_ms }}ms
Current:  {{ data.current.feature }} ({{ data.current.timestamp }}) {{ data.current.status }}, \
{{ data.current.duration_ms }}ms
Duration change: {{ percent(data.duration_delta_percent) }} (tolerance {{ data.tolerance_percent }}%)
{% for title, change in sections %}
{% set items = data.scenarios|selectattr('change', 'equalto', change)|list %}
{% if items %}

{{ title }} ({{ items|length }}):
{% for item in items %}
  - {{ item.name }}: {{ item.baseline_status or '-' }} -> {{ item.current_status or '-' }}, \
{{ item.baseline_duration_ms if item.baseline_duration_ms is not none else '-' }}ms -> \
{{ item.current_duration_ms if item.current_duration_ms is not none else '-' }}ms \
({{ percent(item.duration_delta_percent) }})
{% endfor %}
{% endif %}
{% endfor %}

Metrics:
{% for metric in data.metrics %}
  {{ metric.name }}: {{ metric.baseline }} -> {{ metric.current }} ({{ '%+d'|format(metric.difference) }})
{% endfor %}
{% if data.step_changes %}

Step performance:
{% for change in data.step_changes %}
  {{ 'slower' if change.slower else 'faster' }}: {{ change.step }} \
{{ change.baseline_avg_ms }}ms -> {{ change.current_avg_ms }}ms ({{ percent(change.change_percent) }})
{% endfor %}
{% endif %}
"""

CATALOG_TEXT = """Available steps ({{ total }}):
{% for category, patterns in groups %}

{{ category }} ({{ patterns|length }}):
{% for pattern in patterns %}
  {{ pattern.id }}
      {{ pattern.template }}
{% for alias in pattern.aliases %}
      {{ alias }}
{% endfor %}
{% if pattern.description %}
      {{ pattern.description }}
{% endif %}
{% endfor %}
{% endfor %}
"""

_STYLE = """
        body { font-family: Arial, sans-serif; margin: 20px; background-color: #f5f5f5; }
        .header { background-color: #333; color: white; padding: 20px; border-radius: 5px; margin-bottom: 20px; }
        .summary { display: flex; gap: 20px; margin-bottom: 30px; }
        .summary-card { background: white; padding: 20px; border-radius: 5px;
                        box-shadow: 0 2px 4px rgba(0,0,0,0.1); flex: 1; text-align: center; }
        .summary-card h3 { margin: 0 0 10px 0; color: #666; }
        .summary-card .number { font-size: 36px; font-weight: bold; }
        .passed, .improvement { color: #28a745; }
        .failed, .regression, .error { color: #dc3545; }
        .skipped, .not_run, .changed { color: #ffc107; }
        .section { background: white; margin-bottom: 20px; border-radius: 5px;
                   box-shadow: 0 2px 4px rgba(0,0,0,0.1); padding: 15px 20px; }
        .scenario { padding: 10px 0; border-bottom: 1px solid #eee; }
        .scenario:last-child { border-bottom: none; }
        .scenario-name { font-weight: bold; }
        .status-badge { padding: 4px 8px; border-radius: 3px; font-size: 12px; color: white; background: #6c757d; }
        .status-badge.passed, .status-badge.improvement { background-color: #28a745; }
        .status-badge.failed, .status-badge.regression { background-color: #dc3545; }
        .step { margin-left: 20px; padding: 3px 0; font-family: monospace; font-size: 14px; }
        .step-error { background-color: #f8d7da; color: #721c24; padding: 10px; margin: 5px 0 5px 20px;
                      border-radius: 3px; font-size: 12px; }
        .tag { background-color: #e9ecef; padding: 2px 6px; border-radius: 3px; font-size: 11px; color: #495057; }
        .duration { color: #6c757d; font-size: 12px; }
        table { border-collapse: collapse; width: 100%; }
        th, td { text-align: left; padding: 6px 10px; border-bottom: 1px solid #eee; }
"""

FEATURE_HTML = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>Execution Report - {{ result.name }}</title>
    <style>{{ style|safe }}</style>
</head>
<body>
    <div class="header">
        <h1>{{ result.name }}</h1>
        {% if result.file %}<p>{{ result.file }}</p>{% endif %}
        <p>Generated: {{ result.timestamp }} &middot; Duration: {{ result.duration_ms }}ms</p>
    </div>

    <div class="summary">
        <div class="summary-card"><h3>Scenarios</h3><div class="number">{{ summary.total_scenarios }}</div></div>
        <div class="summary-card"><h3>Passed</h3><div class="number passed">{{ summary.passed_scenarios }}</div></div>
        <div class="summary-card"><h3>Failed</h3><div class="number failed">{{ summary.failed_scenarios }}</div></div>
        <div class="summary-card"><h3>Pass Rate</h3><div class="number">{{ pass_rate }}%</div></div>
    </div>

    <div class="section">
        {% for scenario in result.scenarios %}
        <div class="scenario">
            <span class="scenario-name">{{ scenario.name }}</span>
            <span class="status-badge {{ scenario.status.value }}">{{ scenario.status.value|upper }}</span>
            <span class="duration">{{ scenario.duration_ms }}ms</span>
            {% for tag in scenario.tags %}<span class="tag">{{ tag }}</span>{% endfor %}
            {% for step in scenario.steps %}
            <div class="step {{ step.status.value }}">{{ symbols[step.status.value] }} {{ step.keyword }} {{ step.text }}
                <span class="duration">{{ step.duration_ms }}ms</span></div>
            {% if step.error %}
            <div class="step-error">[{{ step.error.kind.value }}] {{ step.error.message }}</div>
            {% endif %}
            {% endfor %}
        </div>
        {% endfor %}
    </div>
</body>
</html>
"""

BATCH_HTML = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>Batch Report</title>
    <style>{{ style|safe }}</style>
</head>
<body>
    <div class="header">
        <h1>Batch Report</h1>
        <p>Duration: {{ data.total_duration_ms }}ms</p>
    </div>

    <div class="summary">
        <div class="summary-card"><h3>Features</h3><div class="number">{{ data.total_features }}</div></div>
        <div class="summary-card"><h3>Passed</h3><div class="number passed">{{ data.passed_features }}</div></div>
        <div class="summary-card"><h3>Failed</h3><div class="number failed">{{ data.failed_features }}</div></div>
        <div class="summary-card"><h3>Not Run</h3><div class="number not_run">{{ data.not_run_features }}</div></div>
    </div>

    <div class="section">
        <table>
            <tr><th>File</th><th>Feature</th><th>Status</th><th>Scenarios passed</th><th>Scenarios failed</th><th>Duration</th></tr>
            {% for unit in data.features %}
            <tr>
                <td>{{ unit.path }}</td><td>{{ unit.name }}</td>
                <td><span class="status-badge {{ unit.status }}">{{ unit.status|upper }}</span></td>
                <td>{{ unit.scenarios_passed }}</td><td>{{ unit.scenarios_failed }}</td><td>{{ unit.duration_ms }}ms</td>
            </tr>
            {% endfor %}
        </table>
    </div>

    {% if data.errors %}
    <div class="section">
        <h2>Errors</h2>
        {% for error in data.errors %}
        <div class="step-error">{{ error.path }}: [{{ error.kind }}] {{ error.message }}</div>
        {% endfor %}
    </div>
    {% endif %}
</body>
</html>
"""

COMPARISON_HTML = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>Comparison Report - {{ data.current.feature }}</title>
    <style>{{ style|safe }}</style>
</head>
<body>
    <div class="header">
        <h1>Comparison: <span class="status-badge {{ data.status }}">{{ data.status|upper }}</span></h1>
        <p>Baseline {{ data.baseline.timestamp }} ({{ data.baseline.duration_ms }}ms)
           &rarr; Current {{ data.current.timestamp }} ({{ data.current.duration_ms }}ms)</p>
        <p>Duration change: {{ percent(data.duration_delta_percent) }}</p>
    </div>

    <div class="section">
        <table>
            <tr><th>Scenario</th><th>Change</th><th>Baseline</th><th>Current</th><th>Duration change</th></tr>
            {% for item in data.scenarios %}
            <tr>
                <td>{{ item.name }}</td>
                <td><span class="status-badge {{ item.change }}">{{ item.change|upper }}</span></td>
                <td>{{ item.baseline_status or '-' }}{% if item.baseline_duration_ms is not none %} ({{ item.baseline_duration_ms }}ms){% endif %}</td>
                <td>{{ item.current_status or '-' }}{% if item.current_duration_ms is not none %} ({{ item.current_duration_ms }}ms){% endif %}</td>
                <td>{{ percent(item.duration_delta_percent) }}</td>
            </tr>
            {% endfor %}
        </table>
    </div>

    <div class="section">
        <h2>Metrics</h2>
        <table>
            <tr><th>Metric</th><th>Baseline</th><th>Current</th><th>Difference</th></tr>
            {% for metric in data.metrics %}
            <tr><td>{{ metric.name }}</td><td>{{ metric.baseline }}</td><td>{{ metric.current }}</td><td>{{ metric.difference }}</td></tr>
            {% endfor %}
        </table>
    </div>
</body>
</html>
"""


def _text_template(source: str) -> Template:
    return Template(source, trim_blocks=True, lstrip_blocks=True)


def _format_percent(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:+.1f}%"


def _dump_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def _dump_yaml(data: Any) -> str:
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)


def _tap_diagnostic(data: Dict[str, Any]) -> List[str]:
    block = _dump_yaml(data).rstrip('\n').split('\n')
    return ["  ---"] + [f"  {line}" for line in block] + ["  ..."]


class ReportCollector:
    """Renders results in text, JSON, YAML, TAP or HTML and writes them to disk"""

    def __init__(self, output_dir: str = "test-results"):
        self.output_dir = Path(output_dir)

    def render(self, document: Any, format: str = "text") -> str:
        if isinstance(document, FeatureResult):
            return self.render_feature(document, format)
        if isinstance(document, ValidationReport):
            return self.render_validation(document, format)
        if isinstance(document, BatchSummary):
            return self.render_batch(document, format)
        if isinstance(document, ComparisonReport):
            return self.render_comparison(document, format)
        raise TypeError(f"Cannot render {type(document).__name__}")

    def render_feature(self, result: FeatureResult, format: str = "text") -> str:
        if format == "json":
            return _dump_json(result.to_dict())
        if format == "yaml":
            return _dump_yaml(result.to_dict())
        if format == "tap":
            return self._feature_tap(result)

        summary = result.summary
        if format == "text":
            return _text_template(FEATURE_TEXT).render(result=result, summary=summary, symbols=SYMBOLS) + "\n"
        if format == "html":
            executed = summary.passed_scenarios + summary.failed_scenarios
            pass_rate = round((summary.passed_scenarios / executed * 100) if executed > 0 else 0, 1)
            return Template(FEATURE_HTML, autoescape=True).render(
                result=result, summary=summary, symbols=SYMBOLS, pass_rate=pass_rate, style=_STYLE,
            )
        raise ValueError(f"Unsupported report format: {format}")

    def _feature_tap(self, result: FeatureResult) -> str:
        """TAP 13, one test line per scenario"""
        lines = ["TAP version 13", f"1..{len(result.scenarios)}"]
        if result.file:
            lines.append(f"# File: {result.file}")
        for number, scenario in enumerate(result.scenarios, 1):
            if scenario.status is Status.SKIPPED:
                lines.append(f"ok {number} {scenario.name} # SKIP not run")
            elif scenario.status is Status.PASSED:
                lines.append(f"ok {number} {scenario.name}")
            else:
                lines.append(f"not ok {number} {scenario.name}")
                failed = scenario.failed_step
                if failed is not None:
                    diagnostic = {
                        'message': f"Step failed: {failed.keyword} {failed.text}",
                        'severity': 'fail',
                        'data': {'line': failed.line, 'duration_ms': failed.duration_ms},
                    }
                    if failed.error:
                        diagnostic['data'].update(failed.error.to_dict())
                    lines.extend(_tap_diagnostic(diagnostic))
        summary = result.summary
        lines.append(f"# pass {summary.passed_scenarios}")
        lines.append(f"# fail {summary.failed_scenarios}")
        return "\n".join(lines) + "\n"

    def render_validation(self, report: ValidationReport, format: str = "text") -> str:
        if format == "json":
            return _dump_json(report.to_dict())
        if format == "yaml":
            return _dump_yaml(report.to_dict())
        if format == "text":
            return _text_template(VALIDATION_TEXT).render(report=report) + "\n"
        if format == "tap":
            if report.valid:
                return f"TAP version 13\n1..1\nok 1 {report.feature}\n"
            lines = ["TAP version 13", f"1..{len(report.errors)}"]
            for number, error in enumerate(report.errors, 1):
                lines.append(f"not ok {number} line {error.line}: {error.keyword} {error.text}")
                lines.extend(_tap_diagnostic({
                    'message': f"Unknown step in scenario '{error.scenario}'",
                    'severity': 'fail',
                    'data': error.to_dict(),
                }))
            return "\n".join(lines) + "\n"
        raise ValueError(f"Unsupported validation format: {format}")

    def render_batch(self, summary: BatchSummary, format: str = "text") -> str:
        data = summary.to_dict()
        if format == "json":
            return _dump_json(data)
        if format == "yaml":
            return _dump_yaml(data)
        symbols = dict(SYMBOLS, error='✗', not_run='⊘')
        if format == "text":
            return _text_template(BATCH_TEXT).render(data=data, symbols=symbols) + "\n"
        if format == "html":
            return Template(BATCH_HTML, autoescape=True).render(data=data, style=_STYLE)
        if format == "tap":
            lines = ["TAP version 13", f"1..{len(summary.units)}"]
            for number, unit in enumerate(summary.units, 1):
                if unit.status == "not_run":
                    lines.append(f"ok {number} {unit.path} # SKIP not run")
                else:
                    lines.append(f"{'ok' if unit.passed else 'not ok'} {number} {unit.path}")
            return "\n".join(lines) + "\n"
        raise ValueError(f"Unsupported batch format: {format}")

    def render_comparison(self, report: ComparisonReport, format: str = "text") -> str:
        data = report.to_dict()
        if format == "json":
            return _dump_json(data)
        if format == "yaml":
            return _dump_yaml(data)
        if format == "text":
            sections = [
                ("Regressions", "regression"),
                ("Improvements", "improvement"),
                ("Other status changes", "changed"),
                ("Added scenarios", "added"),
                ("Removed scenarios", "removed"),
            ]
            return _text_template(COMPARISON_TEXT).render(
                data=data, sections=sections, percent=_format_percent,
            ) + "\n"
        if format == "html":
            return Template(COMPARISON_HTML, autoescape=True).render(
                data=data, style=_STYLE, percent=_format_percent,
            )
        raise ValueError(f"Unsupported comparison format: {format}")

    def render_catalog(self, patterns: Iterable[StepPattern], format: str = "text") -> str:
        patterns = list(patterns)
        if format == "json":
            return _dump_json([pattern.to_dict() for pattern in patterns])
        if format == "yaml":
            return _dump_yaml([pattern.to_dict() for pattern in patterns])
        if format == "text":
            groups: Dict[str, List[StepPattern]] = {}
            for pattern in patterns:
                groups.setdefault(pattern.category, []).append(pattern)
            return _text_template(CATALOG_TEXT).render(
                total=len(patterns), groups=sorted(groups.items()),
            ) + "\n"
        raise ValueError(f"Unsupported catalog format: {format}")

    def write(self, content: str, path: Union[str, Path]) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        logger.info(f"Report written: {path}")
        return str(path)

    def generate_report(self, document: Any, format: str = "html") -> str:
        """Render into a timestamped file under the output directory"""
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        report_path = self.output_dir / f"report_{timestamp}.{_EXTENSIONS[format]}"
        return self.write(self.render(document, format), report_path)

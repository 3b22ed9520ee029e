import sys
import logging
import dataclasses
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .bdd import parse_file
from .core import ConfigManager
from .core.exceptions import BackendSessionError, ComparisonError, ConfigurationError, ParseError, ValidationError
from .executor import (
    BatchConfig,
    BatchScheduler,
    ComparisonConfig,
    DebugSession,
    ExecutionEngine,
    ExecutorConfig,
    ReportCollector,
    build_default_registry,
    compare as compare_results,
    load_result,
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_INVALID_ARGS = 2
EXIT_FILE_NOT_FOUND = 3
EXIT_VALIDATION_FAILED = 4
EXIT_EXECUTION_FAILED = 5

RUN_FORMATS = ['text', 'json', 'yaml', 'tap', 'html']


def _emit(content: str, output: Optional[str]):
    if output:
        path = ReportCollector().write(content, output)
        click.echo(f"Report written to {path}", err=True)
    else:
        click.echo(content, nl=False)


def _fail(ctx, message: str, code: int):
    click.echo(f"Error: {message}", err=True)
    ctx.exit(code)


def _require_file(ctx, path: str) -> Path:
    resolved = Path(path)
    if not resolved.exists():
        _fail(ctx, f"File not found: {path}", EXIT_FILE_NOT_FOUND)
    return resolved


def _load_feature(ctx, path: str):
    resolved = _require_file(ctx, path)
    try:
        return parse_file(resolved)
    except ParseError as e:
        _fail(ctx, f"Parse error: {e}", EXIT_VALIDATION_FAILED)
    except UnicodeDecodeError as e:
        _fail(ctx, f"Cannot decode {path} as UTF-8: {e}", EXIT_VALIDATION_FAILED)
    except OSError as e:
        _fail(ctx, f"Cannot read {path}: {e.strerror or e}", EXIT_FILE_NOT_FOUND)


def _executor_config(ctx, browser=None, headless=None, base_url=None, timeout=None,
                     screenshot_on_failure=None, tags=()) -> ExecutorConfig:
    return ExecutorConfig.from_config(
        ctx.obj,
        browser=browser,
        headless=headless,
        base_url=base_url,
        timeout_ms=timeout,
        screenshot_on_failure=screenshot_on_failure or None,
        tags=list(tags) or None,
    )


def browser_options(func):
    """Options shared by the commands that drive a browser"""
    options = [
        click.option('-b', '--browser', type=click.Choice(['chromium', 'firefox', 'webkit']),
                     help='Browser to use'),
        click.option('--headless/--headed', default=None, help='Run the browser headless'),
        click.option('--base-url', help='Base URL for relative navigation'),
        click.option('--timeout', type=click.IntRange(min=1), help='Default timeout in milliseconds'),
        click.option('--screenshot-on-failure', is_flag=True, help='Capture a screenshot when a step fails'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(__version__, prog_name="web-spec")
@click.option('--config', '-c', type=click.Path(), help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, config, verbose):
    """web-spec - behavior-driven browser test runner"""
    try:
        manager = ConfigManager(Path(config) if config else None)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_ERROR)

    # Logs go to stderr so machine-readable output on stdout stays clean
    level = logging.DEBUG if verbose else getattr(logging, str(manager.get('general.log_level', 'INFO')).upper(),
                                                  logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )
    ctx.obj = manager


@cli.command()
@click.argument('feature_file')
@click.option('-f', '--format', 'fmt', type=click.Choice(RUN_FORMATS), help='Output format')
@click.option('-o', '--output', type=click.Path(), help='Write the report to a file')
@click.option('--dry-run', is_flag=True, help='Match steps without executing them')
@click.option('--strict', is_flag=True, help='Refuse to run when any step is unknown')
@click.option('-t', '--tags', multiple=True, help='Only run scenarios with one of these tags')
@browser_options
@click.pass_context
def run(ctx, feature_file, fmt, output, dry_run, strict, tags, browser, headless, base_url, timeout,
        screenshot_on_failure):
    """Execute a scenario file"""
    feature = _load_feature(ctx, feature_file)
    config = _executor_config(ctx, browser, headless, base_url, timeout, screenshot_on_failure, tags)
    engine = ExecutionEngine(build_default_registry(), config)
    if strict:
        try:
            engine.ensure_valid(feature)
        except ValidationError as e:
            click.echo(ReportCollector().render_validation(e.report, 'text'), err=True, nl=False)
            _fail(ctx, str(e), EXIT_VALIDATION_FAILED)

    try:
        result = engine.execute_feature(feature, dry_run=dry_run)
    except BackendSessionError as e:
        _fail(ctx, str(e), EXIT_ERROR)

    _emit(ReportCollector().render_feature(result, fmt or ctx.obj.get('report.format', 'text')), output)
    ctx.exit(EXIT_SUCCESS if result.passed else EXIT_EXECUTION_FAILED)


@cli.command()
@click.argument('feature_file')
@click.option('-f', '--format', 'fmt', type=click.Choice(['text', 'json', 'yaml', 'tap']), default='text',
              help='Output format')
@click.option('-o', '--output', type=click.Path(), help='Write the report to a file')
@click.pass_context
def validate(ctx, feature_file, fmt, output):
    """Check that every step matches a registered pattern, without executing"""
    feature = _load_feature(ctx, feature_file)
    report = ExecutionEngine(build_default_registry()).validate(feature)
    _emit(ReportCollector().render_validation(report, fmt), output)
    ctx.exit(EXIT_SUCCESS if report.valid else EXIT_VALIDATION_FAILED)


def _read_debug_command(prompt: str) -> str:
    try:
        return click.prompt(prompt, default='', show_default=False, prompt_suffix=' ', err=True)
    except click.exceptions.Abort:
        raise EOFError() from None


@cli.command()
@click.argument('feature_file')
@click.option('--breakpoint', 'breakpoints', multiple=True,
              help='Pause at a scenario name, step text or #<step number>')
@click.option('-s', '--scenario', 'scenario_name', help='Only debug the scenario with this name')
@click.option('--auto-step', is_flag=True, help='Step through every step automatically')
@click.option('--delay', type=click.FloatRange(min=0), help='Pause between auto-steps, in seconds')
@click.option('-f', '--format', 'fmt', type=click.Choice(RUN_FORMATS), default='text', help='Output format')
@click.option('-o', '--output', type=click.Path(), help='Write the report to a file')
@browser_options
@click.pass_context
def debug(ctx, feature_file, breakpoints, scenario_name, auto_step, delay, fmt, output,
          browser, headless, base_url, timeout, screenshot_on_failure):
    """Run a scenario file under the interactive step debugger"""
    feature = _load_feature(ctx, feature_file)
    if scenario_name:
        selected = tuple(s for s in feature.scenarios if s.name == scenario_name)
        if not selected:
            _fail(ctx, f"No scenario named '{scenario_name}'", EXIT_INVALID_ARGS)
        feature = dataclasses.replace(feature, scenarios=selected)

    config = _executor_config(ctx, browser, headless, base_url, timeout, screenshot_on_failure)
    session = DebugSession(
        ExecutionEngine(build_default_registry(), config),
        command_source=_read_debug_command,
        output=lambda message: click.echo(message, err=True),
        breakpoints=breakpoints,
        auto_step=auto_step,
        auto_step_delay=delay if delay is not None else ctx.obj.get('debugger.auto_step_delay', 0.5),
        start_paused=not breakpoints and not auto_step,
    )

    try:
        result = session.run(feature)
    except BackendSessionError as e:
        _fail(ctx, str(e), EXIT_ERROR)

    _emit(ReportCollector().render_feature(result, fmt), output)
    ctx.exit(EXIT_SUCCESS if result.passed else EXIT_EXECUTION_FAILED)


@cli.command()
@click.argument('path')
@click.option('--parallel/--sequential', default=None, help='Run files in parallel or one at a time')
@click.option('-w', '--workers', type=click.IntRange(min=1), help='Maximum parallel workers')
@click.option('--continue-on-failure', is_flag=True, default=None, help='Run every file even after a failure')
@click.option('--pattern', help='Glob for scenario files (default *.feature)')
@click.option('--strict', is_flag=True, default=None, help='Treat files with unknown steps as errors')
@click.option('-t', '--tags', multiple=True, help='Only run scenarios with one of these tags')
@click.option('-f', '--format', 'fmt', type=click.Choice(RUN_FORMATS), default='text', help='Output format')
@click.option('-o', '--output', type=click.Path(), help='Write the report to a file')
@click.option('--results-dir', type=click.Path(file_okay=False), help='Also save each feature result as JSON')
@browser_options
@click.pass_context
def batch(ctx, path, parallel, workers, continue_on_failure, pattern, strict, tags, fmt, output, results_dir,
          browser, headless, base_url, timeout, screenshot_on_failure):
    """Run every scenario file under a directory"""
    _require_file(ctx, path)
    scheduler = BatchScheduler(
        build_default_registry(),
        BatchConfig.from_config(
            ctx.obj,
            parallel=parallel,
            max_workers=workers,
            continue_on_failure=continue_on_failure or None,
            pattern=pattern,
            strict=strict or None,
        ),
        _executor_config(ctx, browser, headless, base_url, timeout, screenshot_on_failure, tags),
    )

    try:
        summary = scheduler.run(path)
    except BackendSessionError as e:
        _fail(ctx, str(e), EXIT_ERROR)

    collector = ReportCollector()
    if results_dir:
        for unit in summary.units:
            if unit.result is not None:
                collector.write(collector.render_feature(unit.result, 'json'),
                                Path(results_dir) / f"{Path(unit.path).stem}.json")

    _emit(collector.render_batch(summary, fmt), output)
    ctx.exit(EXIT_SUCCESS if summary.passed else EXIT_EXECUTION_FAILED)


@cli.command()
@click.argument('baseline')
@click.argument('current')
@click.option('--tolerance', type=click.FloatRange(min=0), help='Duration change (percent) treated as equal')
@click.option('-f', '--format', 'fmt', type=click.Choice(['text', 'json', 'yaml', 'html']), default='text',
              help='Output format')
@click.option('-o', '--output', type=click.Path(), help='Write the report to a file')
@click.pass_context
def compare(ctx, baseline, current, tolerance, fmt, output):
    """Compare two saved results and detect regressions"""
    baseline_path = _require_file(ctx, baseline)
    current_path = _require_file(ctx, current)
    try:
        report = compare_results(
            load_result(baseline_path),
            load_result(current_path),
            ComparisonConfig.from_config(ctx.obj, duration_tolerance_percent=tolerance),
        )
    except ComparisonError as e:
        _fail(ctx, str(e), EXIT_ERROR)
    except OSError as e:
        _fail(ctx, f"Cannot read result document: {e.strerror or e}", EXIT_FILE_NOT_FOUND)

    _emit(ReportCollector().render_comparison(report, fmt), output)
    ctx.exit(EXIT_EXECUTION_FAILED if report.status == "regression" else EXIT_SUCCESS)


@cli.command(name='list-steps')
@click.option('--category', help='Only list one category')
@click.option('-f', '--format', 'fmt', type=click.Choice(['text', 'json', 'yaml']), default='text',
              help='Output format')
def list_steps(category, fmt):
    """List the available step patterns"""
    registry = build_default_registry()
    patterns = registry.by_category(category) if category else registry.all_patterns()
    if category and not patterns:
        click.echo(f"Error: Unknown category '{category}'. Available: {', '.join(registry.categories())}",
                   err=True)
        sys.exit(EXIT_INVALID_ARGS)
    click.echo(ReportCollector().render_catalog(patterns, fmt), nl=False)


@cli.command(name='search-steps')
@click.argument('query')
@click.option('--category', help='Only search one category')
@click.option('-f', '--format', 'fmt', type=click.Choice(['text', 'json', 'yaml']), default='text',
              help='Output format')
def search_steps(query, category, fmt):
    """Search step patterns by text, description, id or example"""
    patterns = build_default_registry().search(query, category=category)
    if not patterns and fmt == 'text':
        click.echo(f"No steps found matching '{query}'")
        return
    click.echo(ReportCollector().render_catalog(patterns, fmt), nl=False)


@cli.command(name='export-schema')
@click.option('-f', '--format', 'fmt', type=click.Choice(['json', 'yaml']), default='json', help='Schema format')
@click.option('-o', '--output', type=click.Path(), help='Write the schema to a file')
def export_schema(fmt, output):
    """Export the step catalog as a machine-readable schema"""
    import json
    import yaml

    schema = build_default_registry().export_schema()
    if fmt == 'json':
        content = json.dumps(schema, indent=2) + "\n"
    else:
        content = yaml.safe_dump(schema, default_flow_style=False, sort_keys=False)
    _emit(content, output)


def main():
    cli()


if __name__ == "__main__":
    main()

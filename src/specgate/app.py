"""Typer application and CLI entry point for specgate.

This module wires together the top-level Typer application and its three
commands:

* ``specgate run OLD NEW RULES`` -- the full pipeline: validate both
  documents against the rule file, then resolve both.
* ``specgate resolve OLD NEW`` -- the resolve-only pipeline.
* ``specgate validate FILE RULES`` -- validate a single document.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers and invokes the Typer app.
Unhandled exceptions are written to a crash log under the data directory.

See Also:
    :mod:`specgate.pipeline`: The state machine behind ``run`` and ``resolve``.
    :mod:`specgate.config`: Precedence resolution for the options below.
    :mod:`specgate.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

import typer

from specgate import __version__
from specgate.exceptions import SpecgateError
from specgate.exit_codes import (
    EXIT_GENERIC_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_VALIDATION_FAILURE,
)
from specgate.models import CyclePolicy, GateConfig, Severity
from specgate.output import error, report_findings, success

if TYPE_CHECKING:
    from specgate.pipeline import PipelineResult


app = typer.Typer(
    name="specgate",
    help="Validate OpenAPI documents with custom rules and resolve their $refs.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"specgate {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Write findings to stdout as JSON."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~specgate.output.OutputManager` from
    CLI flags and sets the logging level for library modules.

    Args:
        ctx: Typer invocation context.
        version: If ``True``, print the version string and exit.
        json_output: Force JSON output format.
        plain_output: Force plain-text output format.
        no_color: Disable all colour and Rich markup.
        quiet: Suppress non-essential diagnostic output.
        verbose: Enable debug-level diagnostic output.
    """
    from specgate.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(
        OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    )
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


# ------------------------------------------------------------------ #
# Shared options
# ------------------------------------------------------------------ #

_FAIL_ON_HELP = "Lowest finding severity that fails the run (default: hint, i.e. any finding)."


def _load_config(
    fail_on: Optional[Severity] = None,
    output_dir: Optional[str] = None,
    allow_file_refs: Optional[bool] = None,
    allow_remote: Optional[bool] = None,
    on_cycle: Optional[CyclePolicy] = None,
) -> GateConfig:
    """Resolve the effective config with CLI flags on top.

    Raises:
        typer.Exit: With the error's exit code when any config layer is
            invalid.
    """
    from specgate.config import resolve_config

    overrides: dict[str, Any] = {
        "fail_on": fail_on.value if fail_on is not None else None,
        "output_dir": output_dir,
        "resolver": {
            "allow_file_refs": allow_file_refs,
            "allow_remote": allow_remote,
            "on_cycle": on_cycle.value if on_cycle is not None else None,
        },
    }
    try:
        return resolve_config(overrides)
    except SpecgateError as exc:
        error(f"Config error: {exc}")
        raise typer.Exit(code=exc.exit_code) from None


def _finish(result: "PipelineResult", validated: bool) -> None:
    """Report a pipeline result and exit with its code on failure."""
    from specgate.exceptions import ValidationFailure

    if validated:
        report_findings(result.findings)

    if result.ok:
        if validated:
            success("OpenAPI documents validated and resolved documents generated.")
        else:
            success("Resolved documents generated.")
        return

    exc = result.error
    if isinstance(exc, ValidationFailure):
        error(f"Invalid OpenAPI document: {exc.path} ({exc.message})")
    else:
        error(str(exc))
    raise typer.Exit(code=result.exit_code)


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


@app.command("run")
def run_command(
    old: str = typer.Argument(..., help="Path to the old OpenAPI document."),
    new: str = typer.Argument(..., help="Path to the new OpenAPI document."),
    rules: str = typer.Argument(..., help="Path to the rule file."),
    fail_on: Optional[Severity] = typer.Option(
        None, "--fail-on", case_sensitive=False, help=_FAIL_ON_HELP
    ),
    output_dir: Optional[str] = typer.Option(
        None, "--output-dir", "-d", help="Directory for the resolved documents."
    ),
    allow_file_refs: Optional[bool] = typer.Option(
        None, "--allow-file-refs/--no-file-refs", help="Follow $refs to local files."
    ),
    allow_remote: Optional[bool] = typer.Option(
        None, "--allow-remote/--no-remote", help="Follow $refs to http(s) URLs."
    ),
    on_cycle: Optional[CyclePolicy] = typer.Option(
        None, "--on-cycle", case_sensitive=False, help="Circular $refs: keep or fail."
    ),
) -> None:
    """Validate OLD and NEW against RULES, then resolve both.

    Stops at the first failure: if OLD is invalid, NEW is not validated and
    no resolved document is written.

    Example::

        specgate run oldSwagger.yaml swagger.yaml rules.yaml
        specgate run old.yaml new.yaml rules.yaml --fail-on error
    """
    from specgate.pipeline import Pipeline

    config = _load_config(fail_on, output_dir, allow_file_refs, allow_remote, on_cycle)
    result = Pipeline(old, new, config, rules_path=rules).run()
    _finish(result, validated=True)


@app.command("resolve")
def resolve_command(
    old: str = typer.Argument(..., help="Path to the old OpenAPI document."),
    new: str = typer.Argument(..., help="Path to the new OpenAPI document."),
    output_dir: Optional[str] = typer.Option(
        None, "--output-dir", "-d", help="Directory for the resolved documents."
    ),
    allow_file_refs: Optional[bool] = typer.Option(
        None, "--allow-file-refs/--no-file-refs", help="Follow $refs to local files."
    ),
    allow_remote: Optional[bool] = typer.Option(
        None, "--allow-remote/--no-remote", help="Follow $refs to http(s) URLs."
    ),
    on_cycle: Optional[CyclePolicy] = typer.Option(
        None, "--on-cycle", case_sensitive=False, help="Circular $refs: keep or fail."
    ),
) -> None:
    """Resolve every $ref in OLD and NEW without validating them.

    Example::

        specgate resolve oldSwagger.yaml swagger.yaml --output-dir build/
    """
    from specgate.pipeline import Pipeline

    config = _load_config(None, output_dir, allow_file_refs, allow_remote, on_cycle)
    result = Pipeline(old, new, config).run()
    _finish(result, validated=False)


@app.command("validate")
def validate_command(
    file: str = typer.Argument(..., help="Path to the OpenAPI document."),
    rules: str = typer.Argument(..., help="Path to the rule file."),
    fail_on: Optional[Severity] = typer.Option(
        None, "--fail-on", case_sensitive=False, help=_FAIL_ON_HELP
    ),
) -> None:
    """Validate a single document against RULES.

    Example::

        specgate validate swagger.yaml rules.yaml --json
    """
    from specgate.parser import read_document
    from specgate.rules import is_failure, read_rules, validate_document

    config = _load_config(fail_on=fail_on)
    try:
        rule_set = read_rules(rules)
        document = read_document(file)
        findings = validate_document(document, rule_set)
    except SpecgateError as exc:
        error(str(exc.with_context(stage="validate")))
        raise typer.Exit(code=exc.exit_code) from None

    report_findings({file: findings})
    if is_failure(findings, config.fail_on):
        error(f"Invalid OpenAPI document: {file}")
        raise typer.Exit(code=EXIT_VALIDATION_FAILURE)
    success(f"Valid with rules applied: {file}")


# ------------------------------------------------------------------ #
# Entry point
# ------------------------------------------------------------------ #


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path.

    Args:
        exc: The unhandled exception to log.

    Returns:
        Absolute path to the written crash log file.
    """
    from specgate.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``specgate`` console script.

    Unhandled :class:`~specgate.exceptions.SpecgateError` instances cause a
    clean exit with the error's ``exit_code``. All other exceptions produce
    a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as exc:
        if isinstance(exc, SpecgateError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)

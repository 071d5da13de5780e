"""Integration tests for the specgate CLI.

Drives the real Typer application through ``CliRunner`` against the YAML
fixtures copied into an isolated working directory, and checks exit codes,
messages, and the resolved files left on disk.
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from specgate import __version__
from specgate.app import app, main
from specgate.exceptions import ResolutionError
from specgate.parser.loader import read_document
from specgate.parser.resolver import index_references


def _invoke(runner: CliRunner, *args: str):
    return runner.invoke(app, ["--no-color", *args])


# ---------------------------------------------------------------------------
# Global options
# ---------------------------------------------------------------------------


class TestGlobalOptions:
    def test_version(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"specgate {__version__}" in result.output

    def test_help_lists_commands(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("run", "resolve", "validate"):
            assert command in result.output


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


class TestRunCommand:
    def test_success_writes_both_outputs(self, cli_runner: CliRunner, workspace: Path) -> None:
        result = _invoke(
            cli_runner,
            "run",
            str(workspace / "oldSwagger.yaml"),
            str(workspace / "swagger.yaml"),
            str(workspace / "rules.yaml"),
        )
        assert result.exit_code == 0, result.output
        assert "OpenAPI documents validated and resolved documents generated." in result.output

        cwd = Path.cwd()
        for name in ("oldSwaggerResolve.yaml", "swaggerResolve.yaml"):
            output = cwd / name
            assert output.is_file()
            assert index_references(read_document(output).root) == []

    def test_invalid_old_fails_fast(self, cli_runner: CliRunner, workspace: Path) -> None:
        invalid = str(workspace / "invalid.yaml")
        result = _invoke(
            cli_runner,
            "run",
            invalid,
            str(workspace / "swagger.yaml"),
            str(workspace / "rules.yaml"),
        )
        assert result.exit_code == 3
        assert f"Invalid OpenAPI document: {invalid}" in result.output
        assert f"{invalid}: [error] The document must declare at least one security scheme" in result.output
        assert f"{invalid}: [warning] info.contact must be present" in result.output
        assert (
            f"{invalid}: [error] Server URLs must use https (http://api.example.com)"
            in result.output
        )
        assert "swagger.yaml: [" not in result.output
        assert not (Path.cwd() / "oldSwaggerResolve.yaml").exists()
        assert not (Path.cwd() / "swaggerResolve.yaml").exists()

    def test_fail_on_error_tolerates_warnings(self, cli_runner: CliRunner, workspace: Path) -> None:
        text = (workspace / "oldSwagger.yaml").read_text(encoding="utf-8")
        (workspace / "no_contact.yaml").write_text(
            text.replace("  contact:\n    name: API Team\n    email: api@example.com\n", ""),
            encoding="utf-8",
        )
        args = (
            "run",
            str(workspace / "no_contact.yaml"),
            str(workspace / "swagger.yaml"),
            str(workspace / "rules.yaml"),
        )
        assert _invoke(cli_runner, *args).exit_code == 3
        result = _invoke(cli_runner, *args, "--fail-on", "ERROR")
        assert result.exit_code == 0, result.output
        assert "[warning] info.contact must be present" in result.output

    def test_output_dir(self, cli_runner: CliRunner, workspace: Path) -> None:
        result = _invoke(
            cli_runner,
            "run",
            str(workspace / "oldSwagger.yaml"),
            str(workspace / "swagger.yaml"),
            str(workspace / "rules.yaml"),
            "-d",
            "build",
        )
        assert result.exit_code == 0, result.output
        assert sorted(p.name for p in (Path.cwd() / "build").iterdir()) == [
            "oldSwaggerResolve.yaml",
            "swaggerResolve.yaml",
        ]

    def test_output_dir_from_project_config(self, cli_runner: CliRunner, workspace: Path) -> None:
        (Path.cwd() / "specgate.json").write_text('{"output_dir": "from-project"}', encoding="utf-8")
        result = _invoke(
            cli_runner,
            "run",
            str(workspace / "oldSwagger.yaml"),
            str(workspace / "swagger.yaml"),
            str(workspace / "rules.yaml"),
        )
        assert result.exit_code == 0, result.output
        assert (Path.cwd() / "from-project" / "swaggerResolve.yaml").is_file()

    def test_missing_rule_file(self, cli_runner: CliRunner, workspace: Path) -> None:
        result = _invoke(
            cli_runner,
            "run",
            str(workspace / "oldSwagger.yaml"),
            str(workspace / "swagger.yaml"),
            str(workspace / "missing-rules.yaml"),
        )
        assert result.exit_code == 7
        assert "File not found" in result.output

    def test_bad_config_env(
        self, cli_runner: CliRunner, workspace: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SPECGATE_ALLOW_REMOTE", "perhaps")
        result = _invoke(
            cli_runner,
            "run",
            str(workspace / "oldSwagger.yaml"),
            str(workspace / "swagger.yaml"),
            str(workspace / "rules.yaml"),
        )
        assert result.exit_code == 1
        assert "Config error" in result.output

    def test_invalid_fail_on_value(self, cli_runner: CliRunner, workspace: Path) -> None:
        result = _invoke(
            cli_runner,
            "run",
            str(workspace / "oldSwagger.yaml"),
            str(workspace / "swagger.yaml"),
            str(workspace / "rules.yaml"),
            "--fail-on",
            "fatal",
        )
        assert result.exit_code == 2


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------


class TestResolveCommand:
    def test_resolves_without_rules(self, cli_runner: CliRunner, workspace: Path) -> None:
        result = _invoke(
            cli_runner, "resolve", str(workspace / "invalid.yaml"), str(workspace / "swagger.yaml")
        )
        assert result.exit_code == 0, result.output
        assert "Resolved documents generated." in result.output
        assert (Path.cwd() / "oldSwaggerResolve.yaml").is_file()

    def test_circular_keep_warns(self, cli_runner: CliRunner, workspace: Path) -> None:
        result = _invoke(
            cli_runner, "resolve", str(workspace / "circular.yaml"), str(workspace / "swagger.yaml")
        )
        assert result.exit_code == 0, result.output
        assert "Warning:" in result.output
        assert "circular reference #/components/schemas/Node" in result.output

    def test_circular_fail(self, cli_runner: CliRunner, workspace: Path) -> None:
        result = _invoke(
            cli_runner,
            "resolve",
            str(workspace / "circular.yaml"),
            str(workspace / "swagger.yaml"),
            "--on-cycle",
            "fail",
        )
        assert result.exit_code == 6
        assert "resolve-old" in result.output
        assert not (Path.cwd() / "oldSwaggerResolve.yaml").exists()

    def test_recursive_alias_is_a_document_error(
        self, cli_runner: CliRunner, workspace: Path
    ) -> None:
        (workspace / "recursive.yaml").write_text(
            "openapi: 3.0.3\nx-tree: &a\n  child: *a\n", encoding="utf-8"
        )
        result = _invoke(
            cli_runner, "resolve", str(workspace / "recursive.yaml"), str(workspace / "swagger.yaml")
        )
        assert result.exit_code == 4
        assert "Recursive alias" in result.output
        assert not (Path.cwd() / "oldSwaggerResolve.yaml").exists()

    def test_file_refs_flag(self, cli_runner: CliRunner, workspace: Path) -> None:
        main_doc = str(workspace / "split" / "main.yaml")
        closed = _invoke(cli_runner, "resolve", main_doc, main_doc)
        assert closed.exit_code == 6
        assert "allow_file_refs" in closed.output

        opened = _invoke(cli_runner, "resolve", main_doc, main_doc, "--allow-file-refs")
        assert opened.exit_code == 0, opened.output
        assert index_references(read_document(Path.cwd() / "swaggerResolve.yaml").root) == []


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


class TestValidateCommand:
    def test_valid(self, cli_runner: CliRunner, workspace: Path) -> None:
        document = str(workspace / "swagger.yaml")
        result = _invoke(cli_runner, "validate", document, str(workspace / "rules.yaml"))
        assert result.exit_code == 0, result.output
        assert f"Valid with rules applied: {document}" in result.output

    def test_invalid(self, cli_runner: CliRunner, workspace: Path) -> None:
        result = _invoke(
            cli_runner, "validate", str(workspace / "invalid.yaml"), str(workspace / "rules.yaml")
        )
        assert result.exit_code == 3
        assert result.output.count("invalid.yaml: [") == 3

    def test_json_findings_on_stdout(self, cli_runner: CliRunner, workspace: Path) -> None:
        document = str(workspace / "oldSwagger.yaml")
        result = cli_runner.invoke(
            app, ["--json", "--quiet", "validate", document, str(workspace / "rules.yaml")]
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {document: []}

    def test_syntax_error(self, cli_runner: CliRunner, workspace: Path) -> None:
        (workspace / "broken.yaml").write_text("openapi: 3.0.3\ninfo: [\n", encoding="utf-8")
        result = _invoke(
            cli_runner, "validate", str(workspace / "broken.yaml"), str(workspace / "rules.yaml")
        )
        assert result.exit_code == 4
        assert "Invalid YAML/JSON" in result.output
        assert "line " in result.output


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


class TestMain:
    def test_specgate_error_exit_code(self, isolated_config: Path) -> None:
        with patch("specgate.app._setup_signal_handlers"), patch(
            "specgate.app.app", side_effect=ResolutionError("boom")
        ):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 6

    def test_unexpected_error_writes_crash_log(self, isolated_config: Path) -> None:
        with patch("specgate.app._setup_signal_handlers"), patch(
            "specgate.app.app", side_effect=RuntimeError("kaboom")
        ):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 1
        logs = list((isolated_config / "data" / "specgate" / "logs").glob("crash-*.log"))
        assert len(logs) == 1
        assert "kaboom" in logs[0].read_text()

    def test_keyboard_interrupt(self, isolated_config: Path) -> None:
        with patch("specgate.app._setup_signal_handlers"), patch(
            "specgate.app.app", side_effect=KeyboardInterrupt
        ):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 130

"""Exception hierarchy for specgate.

All exceptions inherit from :class:`SpecgateError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`specgate.exit_codes`.
The top-level handler in :func:`specgate.app.main` catches ``SpecgateError``
and exits with the matching code, while unexpected exceptions produce a crash
log and exit with :data:`EXIT_GENERIC_FAILURE`.

Lower layers raise with a bare message; the pipeline attaches the file path
and stage through :meth:`SpecgateError.with_context` before the error
reaches the user.

Subclass hierarchy::

    SpecgateError (exit 1)
    +-- ValidationFailure    (exit 3)
    +-- EncodingError        (exit 4)
    +-- DocumentSyntaxError  (exit 4)
    +-- RuleFileError        (exit 5)
    +-- ResolutionError      (exit 6)
    +-- IOError_             (exit 7)
    +-- ConfigError          (exit 1)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from specgate.exit_codes import (
    EXIT_DOCUMENT_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_IO_ERROR,
    EXIT_RESOLUTION_ERROR,
    EXIT_RULE_FILE_ERROR,
    EXIT_VALIDATION_FAILURE,
)

if TYPE_CHECKING:
    from specgate.models import Finding


class SpecgateError(Exception):
    """Base exception for all specgate errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`specgate.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
        path: File the error relates to, if any.
        stage: Pipeline stage during which the error occurred, if any.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        path: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.path = path
        self.stage = stage
        if exit_code is not None:
            self.exit_code = exit_code

    def with_context(
        self, path: Optional[str] = None, stage: Optional[str] = None
    ) -> "SpecgateError":
        """Attach path/stage context unless already set, and return ``self``."""
        if self.path is None:
            self.path = path
        if self.stage is None:
            self.stage = stage
        return self

    def __str__(self) -> str:
        parts = [p for p in (self.stage, self.path) if p]
        parts.append(self.message)
        return ": ".join(parts)


class ValidationFailure(SpecgateError):
    """Raised when a document produces findings at or above the failure threshold.

    Not a hard error: the document was parsed and checked, the findings are a
    policy outcome. The findings themselves are kept on ``findings`` so the
    caller can report them one per line.
    """

    exit_code = EXIT_VALIDATION_FAILURE

    def __init__(
        self,
        message: str,
        findings: list["Finding"],
        path: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message, path=path, stage=stage)
        self.findings = findings


class EncodingError(SpecgateError):
    """Raised when input bytes cannot be transcoded to UTF-8."""

    exit_code = EXIT_DOCUMENT_ERROR


class DocumentSyntaxError(SpecgateError):
    """Raised when a document is not well-formed YAML/JSON.

    ``line`` and ``column`` are 1-based when known.
    """

    exit_code = EXIT_DOCUMENT_ERROR

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        path: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        if line is not None:
            message = f"{message} (line {line}, column {column})"
        super().__init__(message, path=path, stage=stage)
        self.line = line
        self.column = column


class RuleFileError(SpecgateError):
    """Raised when the rule file is malformed or a rule lacks ``given``/``severity``."""

    exit_code = EXIT_RULE_FILE_ERROR


class ResolutionError(SpecgateError):
    """Raised when one or more ``$ref`` pointers cannot be resolved.

    ``problems`` lists one message per failing reference.
    """

    exit_code = EXIT_RESOLUTION_ERROR

    def __init__(
        self,
        message: str,
        problems: Optional[list[str]] = None,
        path: Optional[str] = None,
        stage: Optional[str] = None,
    ):
        self.problems = list(problems or [])
        if len(self.problems) > 1:
            message = message + "".join(f"\n  - {p}" for p in self.problems)
        super().__init__(message, path=path, stage=stage)


class IOError_(SpecgateError):
    """Raised when a file cannot be read or written.

    Named with a trailing underscore to avoid shadowing the built-in
    ``IOError``.
    """

    exit_code = EXIT_IO_ERROR


class ConfigError(SpecgateError):
    """Raised for configuration problems (invalid JSON, bad values)."""

    exit_code = EXIT_GENERIC_FAILURE

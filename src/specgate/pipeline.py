"""Pipeline driver: validate both documents, then resolve both, failing fast.

The driver is a small state machine::

    START -> VALIDATE_OLD -> VALIDATE_NEW -> RESOLVE_OLD -> RESOLVE_NEW -> DONE
      \\__________\\______________\\______________\\_____________\\-> FAILED

Each state must fully succeed before the next one starts. The first failure
-- findings at or above the configured threshold, or any
:class:`~specgate.exceptions.SpecgateError` -- moves the machine to
``FAILED`` and nothing after it runs. In particular, an invalid old document
means the new one is never validated and no output file is written.

The resolve-only pipeline starts at ``RESOLVE_OLD``.

Each state reads its document from disk itself; no document value is shared
between states or between the two documents.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from specgate.exceptions import RuleFileError, SpecgateError, ValidationFailure
from specgate.models import Finding, GateConfig, ResolutionResult, RuleSet
from specgate.output import debug, info, success, warning
from specgate.parser.loader import read_document
from specgate.parser.resolver import resolve_references
from specgate.parser.serializer import write_document
from specgate.rules.engine import failing_findings, validate_document
from specgate.rules.loader import read_rules


class PipelineState(str, enum.Enum):
    """States of the pipeline state machine."""

    START = "start"
    VALIDATE_OLD = "validate-old"
    VALIDATE_NEW = "validate-new"
    RESOLVE_OLD = "resolve-old"
    RESOLVE_NEW = "resolve-new"
    DONE = "done"
    FAILED = "failed"


FULL_STAGES = (
    PipelineState.VALIDATE_OLD,
    PipelineState.VALIDATE_NEW,
    PipelineState.RESOLVE_OLD,
    PipelineState.RESOLVE_NEW,
)
"""Stages of the full pipeline (with rules), in order."""

RESOLVE_STAGES = (
    PipelineState.RESOLVE_OLD,
    PipelineState.RESOLVE_NEW,
)
"""Stages of the resolve-only pipeline, in order."""


@dataclass
class PipelineResult:
    """Observable outcome of a pipeline run.

    Attributes:
        state: ``DONE`` or ``FAILED``.
        failed_state: The state that failed, if any.
        error: The error that stopped the run, if any.
        findings: Findings per validated document path, in validation order.
        outputs: Output files written, in order.
        resolutions: Resolution results per document path.
        history: Every state entered, in order.
    """

    state: PipelineState = PipelineState.START
    failed_state: Optional[PipelineState] = None
    error: Optional[SpecgateError] = None
    findings: dict[str, list[Finding]] = field(default_factory=dict)
    outputs: list[Path] = field(default_factory=list)
    resolutions: dict[str, ResolutionResult] = field(default_factory=dict)
    history: list[PipelineState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether the run reached ``DONE``."""
        return self.state == PipelineState.DONE

    @property
    def exit_code(self) -> int:
        """Process exit code for this result."""
        if self.ok:
            return 0
        return self.error.exit_code if self.error is not None else 1


class Pipeline:
    """Drive the validate/resolve state machine for an old and a new document.

    Args:
        old_path: Path to the old OpenAPI document.
        new_path: Path to the new OpenAPI document.
        config: Effective configuration (threshold, outputs, resolver policy).
        rules_path: Path to the rule file. ``None`` runs the resolve-only
            pipeline.
        rule_set: Already-loaded rules; takes precedence over *rules_path*.

    Example::

        result = Pipeline("oldSwagger.yaml", "swagger.yaml", GateConfig(),
                          rules_path="rules.yaml").run()
        sys.exit(result.exit_code)
    """

    def __init__(
        self,
        old_path: str,
        new_path: str,
        config: GateConfig,
        rules_path: Optional[str] = None,
        rule_set: Optional[RuleSet] = None,
    ) -> None:
        self.old_path = str(old_path)
        self.new_path = str(new_path)
        self.config = config
        self.rules_path = rules_path
        self._rule_set = rule_set
        self.result = PipelineResult()
        self._actions: dict[PipelineState, Callable[[], None]] = {
            PipelineState.VALIDATE_OLD: lambda: self._validate(self.old_path),
            PipelineState.VALIDATE_NEW: lambda: self._validate(self.new_path),
            PipelineState.RESOLVE_OLD: lambda: self._resolve(
                self.old_path, self.config.old_output
            ),
            PipelineState.RESOLVE_NEW: lambda: self._resolve(
                self.new_path, self.config.new_output
            ),
        }

    @property
    def validates(self) -> bool:
        """Whether this run includes the validation stages."""
        return self._rule_set is not None or self.rules_path is not None

    @property
    def stages(self) -> tuple[PipelineState, ...]:
        return FULL_STAGES if self.validates else RESOLVE_STAGES

    def run(self) -> PipelineResult:
        """Run every stage in order, stopping at the first failure."""
        self._enter(PipelineState.START)
        for state in self.stages:
            self._enter(state)
            try:
                self._actions[state]()
            except SpecgateError as exc:
                exc.with_context(path=self._path_for(state), stage=state.value)
                return self._fail(state, exc)
        self._enter(PipelineState.DONE)
        return self.result

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _enter(self, state: PipelineState) -> None:
        debug(f"pipeline: {self.result.state.value} -> {state.value}")
        self.result.state = state
        self.result.history.append(state)

    def _fail(self, state: PipelineState, exc: SpecgateError) -> PipelineResult:
        self.result.failed_state = state
        self.result.error = exc
        self._enter(PipelineState.FAILED)
        return self.result

    def _path_for(self, state: PipelineState) -> str:
        if state in (PipelineState.VALIDATE_OLD, PipelineState.RESOLVE_OLD):
            return self.old_path
        return self.new_path

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _rules(self) -> RuleSet:
        if self._rule_set is None:
            if self.rules_path is None:
                raise RuleFileError("No rule file given for validation")
            self._rule_set = read_rules(self.rules_path)
            debug(f"Loaded {len(self._rule_set.rules)} rule(s) from {self.rules_path}")
        return self._rule_set

    def _validate(self, path: str) -> None:
        document = read_document(path)
        findings = validate_document(document, self._rules())
        self.result.findings[path] = findings

        failing = failing_findings(findings, self.config.fail_on)
        if failing:
            raise ValidationFailure(
                f"{len(failing)} finding(s) at or above '{self.config.fail_on.value}'",
                findings=findings,
            )
        success(f"Valid with rules applied: {path}")

    def _resolve(self, path: str, output_name: str) -> None:
        document = read_document(path)
        resolution = resolve_references(document, self.config.resolver)
        self.result.resolutions[path] = resolution
        for circular in resolution.circular_references:
            warning(f"{path}: circular reference {circular.ref} kept at {circular.path}")

        target = Path(self.config.output_dir) / output_name
        write_document(document, target)
        self.result.outputs.append(target)
        info(f"Resolved {resolution.resolved_count} reference(s) in {path}")
        success(f"Resolved document written to: {target}")


def run_pipeline(
    old_path: str, new_path: str, rules_path: str, config: Optional[GateConfig] = None
) -> PipelineResult:
    """Validate both documents against *rules_path*, then resolve both."""
    return Pipeline(old_path, new_path, config or GateConfig(), rules_path=rules_path).run()


def run_resolve_pipeline(
    old_path: str, new_path: str, config: Optional[GateConfig] = None
) -> PipelineResult:
    """Resolve both documents without validating them."""
    return Pipeline(old_path, new_path, config or GateConfig()).run()

"""Canonical Pydantic models shared across all specgate modules.

This is the single source of truth for data shapes in the project. The models
fall into three groups:

**Rule models** -- loaded from the rule file and produced by the engine:
    :class:`Severity`, :class:`Rule`, :class:`RuleSet`, and :class:`Finding`.

**Index and resolution models** -- facts the indexer exposes and the outcome
of reference resolution:
    :class:`IndexFacts`, :class:`CyclePolicy`, :class:`CircularReference`,
    and :class:`ResolutionResult`.

**Configuration models** -- serialised as JSON in the user's config directory
or the project's ``specgate.json``:
    :class:`ResolverConfig` and :class:`GateConfig`.

The document tree itself is not modelled here; it is the PyYAML node graph
wrapped by :class:`~specgate.parser.loader.Document`.
"""

from __future__ import annotations

import enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# --- Rules ---


class Severity(str, enum.Enum):
    """Severity declared on a rule, ordered ``hint < info < warning < error``."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    HINT = "hint"

    @property
    def rank(self) -> int:
        """Numeric rank used for threshold comparisons (higher is more severe)."""
        return _SEVERITY_RANK[self]

    def at_least(self, threshold: "Severity") -> bool:
        """Return ``True`` if this severity is at or above *threshold*."""
        return self.rank >= threshold.rank


_SEVERITY_RANK = {
    Severity.HINT: 0,
    Severity.INFO: 1,
    Severity.WARNING: 2,
    Severity.ERROR: 3,
}


class Rule(BaseModel):
    """A single custom rule from the rule file.

    The rule file uses the Spectral-style ``given`` key for the selector.
    Keys this engine does not interpret (``message``, ``then``, ...) are
    accepted and dropped so that richer rule files still load.

    Example::

        Rule(
            name="servers-use-https",
            given="$.servers[*].url",
            severity=Severity.ERROR,
            description="Server URLs must use https",
        )
    """

    model_config = ConfigDict(extra="ignore")

    name: str
    given: str = Field(description="Selector naming the document fact to check")
    severity: Severity
    description: str = ""


class RuleSet(BaseModel):
    """Rules keyed by name, in rule-file order."""

    rules: dict[str, Rule] = Field(default_factory=dict)


class Finding(BaseModel):
    """One reported issue, from structural validation or from a custom rule.

    ``rule_name`` is ``None`` for structural findings produced by the
    indexer. ``location`` is free text: a ``line N, column M`` position or
    the offending value (for example a server URL).
    """

    severity: Severity
    description: str
    rule_name: Optional[str] = None
    location: Optional[str] = None

    def __str__(self) -> str:
        text = f"[{self.severity.value}] {self.description}"
        if self.location:
            text += f" ({self.location})"
        return text


# --- Index facts ---


class IndexFacts(BaseModel):
    """Read-only snapshot of the document facts consumed by the rule engine."""

    model_config = ConfigDict(frozen=True)

    security_schemes_present: bool = False
    contact_present: bool = False
    server_urls: list[str] = Field(default_factory=list)
    structural_findings: list[Finding] = Field(default_factory=list)


# --- Resolution ---


class CyclePolicy(str, enum.Enum):
    """What the resolver does when a reference points back into its own expansion."""

    KEEP = "keep"
    FAIL = "fail"


class CircularReference(BaseModel):
    """A ``$ref`` left unexpanded because it closes a cycle."""

    ref: str
    path: str = Field(description="JSON pointer of the node holding the $ref")


class ResolutionResult(BaseModel):
    """Outcome of a successful :func:`~specgate.parser.resolver.resolve_references` call."""

    resolved_count: int = 0
    circular_references: list[CircularReference] = Field(default_factory=list)
    documents_loaded: list[str] = Field(
        default_factory=list, description="External documents fetched, in load order"
    )


# --- Configuration ---


class ResolverConfig(BaseModel):
    """Lookup policy for reference resolution.

    The defaults form a *closed* index: only ``#/...`` pointers into the
    loaded document are followed. Relative file references and remote URLs
    must be enabled explicitly.
    """

    allow_remote: bool = Field(
        default=False, description="Follow http(s):// references"
    )
    allow_file_refs: bool = Field(
        default=False, description="Follow references to local files"
    )
    on_cycle: CyclePolicy = Field(
        default=CyclePolicy.KEEP, description="Cycle handling: keep or fail"
    )
    remote_timeout: float = Field(
        default=30.0, description="Timeout in seconds for remote lookups"
    )


class GateConfig(BaseModel):
    """Effective configuration for a pipeline run.

    Loaded by :func:`~specgate.config.resolve_config`, which layers CLI
    flags, environment variables, ``./specgate.json``, and the user config
    file on top of these defaults.
    """

    fail_on: Severity = Field(
        default=Severity.HINT,
        description="Lowest finding severity that fails a run",
    )
    output_dir: str = Field(default=".", description="Directory for resolved outputs")
    old_output: str = "oldSwaggerResolve.yaml"
    new_output: str = "swaggerResolve.yaml"
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)

    def merged(self, overrides: dict[str, Any]) -> "GateConfig":
        """Return a copy with *overrides* applied (nested ``resolver`` keys merge)."""
        data = self.model_dump(mode="json")
        for key, value in overrides.items():
            if key == "resolver" and isinstance(value, dict):
                data["resolver"].update(value)
            else:
                data[key] = value
        return GateConfig.model_validate(data)

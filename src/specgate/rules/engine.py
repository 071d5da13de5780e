"""Evaluate a rule set against a document's index facts.

The order of the returned findings is part of the contract:

1. structural findings from the indexer, in the order it found them;
2. rule findings, in rule-file order;
3. within the server-URL rule, one finding per offending URL in
   server-list order.

Whether a list of findings fails a run is decided separately by
:func:`is_failure`, against a configurable severity threshold.
"""

from __future__ import annotations

import logging

from specgate.models import Finding, IndexFacts, RuleSet, Severity
from specgate.parser.indexer import build_index
from specgate.parser.loader import Document
from specgate.rules.selectors import get_handler

logger = logging.getLogger(__name__)


def evaluate(document: Document, facts: IndexFacts, rule_set: RuleSet) -> list[Finding]:
    """Evaluate every rule in *rule_set* against *facts*.

    Args:
        document: The document the facts were built from.
        facts: Index facts from :func:`~specgate.parser.indexer.build_index`.
        rule_set: Rules to evaluate. Rules with an unsupported selector are
            skipped.

    Returns:
        Structural findings followed by rule findings.
    """
    findings = list(facts.structural_findings)
    for rule in rule_set.rules.values():
        handler = get_handler(rule.given)
        if handler is None:
            logger.debug(
                "Rule '%s' in %s: selector %s not supported, skipping",
                rule.name,
                document.source,
                rule.given,
            )
            continue
        findings.extend(handler(facts, rule))
    return findings


def validate_document(document: Document, rule_set: RuleSet) -> list[Finding]:
    """Index *document* and evaluate *rule_set* against it."""
    return evaluate(document, build_index(document), rule_set)


def failing_findings(
    findings: list[Finding], threshold: Severity = Severity.HINT
) -> list[Finding]:
    """Return the findings whose severity is at or above *threshold*."""
    return [f for f in findings if f.severity.at_least(threshold)]


def is_failure(findings: list[Finding], threshold: Severity = Severity.HINT) -> bool:
    """Return ``True`` if any finding is at or above *threshold*.

    With the default threshold every finding fails the run, whatever its
    declared severity.
    """
    return bool(failing_findings(findings, threshold))

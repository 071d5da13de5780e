"""Rule engine -- load custom rules and evaluate them against index facts.

Typical usage::

    from specgate.rules import read_rules, validate_document, is_failure

    rule_set = read_rules("rules.yaml")
    findings = validate_document(document, rule_set)
    if is_failure(findings):
        ...

Sub-modules:

* :mod:`~specgate.rules.loader` -- Rule-file parsing with all-or-nothing
  validation.
* :mod:`~specgate.rules.selectors` -- Registry of supported ``given``
  selectors and their handlers.
* :mod:`~specgate.rules.engine` -- Ordered evaluation and the failure
  threshold.
"""

from specgate.rules.engine import evaluate, failing_findings, is_failure, validate_document
from specgate.rules.loader import load_rules, read_rules
from specgate.rules.selectors import get_handler, registered_selectors, selector

__all__ = [
    "evaluate",
    "failing_findings",
    "get_handler",
    "is_failure",
    "load_rules",
    "read_rules",
    "registered_selectors",
    "selector",
    "validate_document",
]

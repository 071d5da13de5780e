"""Load custom rules from a YAML rule file.

The rule file is a Spectral-flavoured subset::

    rules:
      servers-use-https:
        given: $.servers[*].url
        severity: error
        description: Server URLs must use https

Every rule needs ``given`` and ``severity``; ``description`` defaults to an
empty string and any other keys are ignored. One bad rule rejects the whole
file -- a partial rule set is never evaluated.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import ValidationError

from specgate.exceptions import DocumentSyntaxError, EncodingError, RuleFileError
from specgate.models import Rule, RuleSet, Severity
from specgate.parser.encoding import normalize, read_normalized
from specgate.parser.loader import load_document, to_python

REQUIRED_FIELDS = ("given", "severity")


def read_rules(path: str | Path) -> RuleSet:
    """Read and parse the rule file at *path*.

    Raises:
        IOError_: If the file cannot be read.
        RuleFileError: If the file is malformed or a rule is incomplete.
    """
    data = read_normalized(path)
    try:
        return load_rules(data, source=str(path))
    except RuleFileError as exc:
        raise exc.with_context(path=str(path))


def load_rules(data: bytes, source: str = "<bytes>") -> RuleSet:
    """Parse rule-file bytes into a :class:`~specgate.models.RuleSet`.

    Args:
        data: Raw rule-file bytes (any BOM is stripped).
        source: Where the bytes came from, for messages.

    Returns:
        The rules, keyed by name in file order.

    Raises:
        RuleFileError: If the content is not well-formed, is not a mapping
            with a ``rules`` mapping, or any rule is missing ``given`` or
            ``severity`` or declares an unknown severity.
    """
    try:
        document = load_document(normalize(data), source=source)
    except (EncodingError, DocumentSyntaxError) as exc:
        raise RuleFileError(f"Cannot parse rule file: {exc}") from exc

    raw = to_python(document.root)
    if not isinstance(raw, dict):
        raise RuleFileError("Rule file must be a mapping with a top-level 'rules' key")
    if "rules" not in raw:
        raise RuleFileError("Rule file has no top-level 'rules' key")
    rules_raw = raw["rules"]
    if rules_raw is None:
        return RuleSet()
    if not isinstance(rules_raw, dict):
        raise RuleFileError("'rules' must be a mapping of rule name to rule")

    rules: dict[str, Rule] = {}
    for name, body in rules_raw.items():
        rule = _parse_rule(str(name), body)
        rules[rule.name] = rule
    return RuleSet(rules=rules)


def _parse_rule(name: str, body: Any) -> Rule:  # noqa: ANN401
    if not isinstance(body, dict):
        raise RuleFileError(f"Rule '{name}' must be a mapping")

    missing = [field for field in REQUIRED_FIELDS if body.get(field) is None]
    if missing:
        raise RuleFileError(
            f"Rule '{name}' is missing required field(s): {', '.join(missing)}"
        )

    given = body["given"]
    if not isinstance(given, str):
        raise RuleFileError(f"Rule '{name}': 'given' must be a string selector")

    severity_raw = str(body["severity"]).strip().lower()
    try:
        severity = Severity(severity_raw)
    except ValueError:
        allowed = ", ".join(s.value for s in Severity)
        raise RuleFileError(
            f"Rule '{name}' has unknown severity '{body['severity']}' (expected one of: {allowed})"
        ) from None

    description = body.get("description")
    try:
        return Rule(
            name=name,
            given=given.strip(),
            severity=severity,
            description="" if description is None else str(description),
        )
    except ValidationError as exc:
        raise RuleFileError(f"Rule '{name}' is invalid: {exc}") from exc

"""Tests for specgate.rules.engine."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from specgate.models import Finding, IndexFacts, Rule, RuleSet, Severity
from specgate.parser.loader import load_document, read_document
from specgate.rules.engine import evaluate, failing_findings, is_failure, validate_document
from specgate.rules.loader import read_rules


FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"


@pytest.fixture
def rule_set() -> RuleSet:
    return read_rules(FIXTURES_DIR / "rules.yaml")


def _finding(severity: Severity) -> Finding:
    return Finding(severity=severity, description=severity.value)


# ---------------------------------------------------------------------------
# evaluate / validate_document
# ---------------------------------------------------------------------------


class TestEvaluate:
    def test_valid_document_has_no_findings(self, rule_set: RuleSet) -> None:
        document = read_document(FIXTURES_DIR / "oldSwagger.yaml")
        assert validate_document(document, rule_set) == []

    def test_three_findings_in_rule_order(self, rule_set: RuleSet) -> None:
        document = read_document(FIXTURES_DIR / "invalid.yaml")
        findings = validate_document(document, rule_set)
        assert [f.rule_name for f in findings] == [
            "security-schemes-defined",
            "contact-present",
            "servers-use-https",
        ]
        assert [f.severity for f in findings] == [
            Severity.ERROR,
            Severity.WARNING,
            Severity.ERROR,
        ]
        assert findings[2].location == "http://api.example.com"

    def test_structural_findings_come_first(self, rule_set: RuleSet) -> None:
        document = load_document(b"openapi: 3.0.3\npaths: {}\n")
        findings = validate_document(document, rule_set)
        assert findings[0].rule_name is None
        assert findings[0].description == "'info' is a required property"
        assert [f.rule_name for f in findings[1:]] == [
            "security-schemes-defined",
            "contact-present",
        ]

    def test_merge_keys_count_as_present(self, rule_set: RuleSet) -> None:
        document = load_document(
            b"openapi: 3.0.3\n"
            b"x-info: &base\n"
            b"  title: T\n"
            b"  version: '1'\n"
            b"  contact: {name: Team}\n"
            b"info:\n"
            b"  <<: *base\n"
            b"paths: {}\n"
            b"components:\n"
            b"  securitySchemes:\n"
            b"    key: {type: apiKey, in: header, name: X-Key}\n"
        )
        assert validate_document(document, rule_set) == []

    def test_unknown_selector_contributes_nothing(self, caplog: pytest.LogCaptureFixture) -> None:
        document = load_document(b"openapi: 3.0.3\n")
        facts = IndexFacts(server_urls=["http://x"])
        unknown = Rule(name="u", given="$.paths[*]", severity=Severity.ERROR)
        known = Rule(name="k", given="$.servers[*].url", severity=Severity.ERROR)

        with caplog.at_level(logging.DEBUG, logger="specgate.rules.engine"):
            with_unknown = evaluate(document, facts, RuleSet(rules={"u": unknown, "k": known}))
        without = evaluate(document, facts, RuleSet(rules={"k": known}))

        assert with_unknown == without
        assert "not supported" in caplog.text

    def test_empty_rule_set_reports_structural_findings_only(self) -> None:
        finding = _finding(Severity.ERROR)
        facts = IndexFacts(structural_findings=[finding])
        assert evaluate(load_document(b"a: 1\n"), facts, RuleSet()) == [finding]


# ---------------------------------------------------------------------------
# Failure threshold
# ---------------------------------------------------------------------------


class TestThreshold:
    def test_default_threshold_fails_on_any_finding(self) -> None:
        assert is_failure([_finding(Severity.HINT)])
        assert not is_failure([])

    def test_error_threshold(self) -> None:
        findings = [_finding(Severity.WARNING), _finding(Severity.INFO)]
        assert not is_failure(findings, Severity.ERROR)
        assert is_failure(findings + [_finding(Severity.ERROR)], Severity.ERROR)

    def test_failing_findings_keeps_order(self) -> None:
        findings = [
            _finding(Severity.ERROR),
            _finding(Severity.HINT),
            _finding(Severity.WARNING),
        ]
        assert [f.severity for f in failing_findings(findings, Severity.WARNING)] == [
            Severity.ERROR,
            Severity.WARNING,
        ]

    @pytest.mark.parametrize(
        "severity,threshold,expected",
        [
            (Severity.ERROR, Severity.WARNING, True),
            (Severity.WARNING, Severity.WARNING, True),
            (Severity.INFO, Severity.WARNING, False),
            (Severity.HINT, Severity.INFO, False),
        ],
    )
    def test_severity_ordering(
        self, severity: Severity, threshold: Severity, expected: bool
    ) -> None:
        assert severity.at_least(threshold) is expected

"""Selector registry: which document fact a rule's ``given`` expression checks.

This is deliberately not a path-query language. Each supported selector
string maps to one handler that inspects the
:class:`~specgate.models.IndexFacts` and returns findings for the rule.
New selectors are added with the :func:`selector` decorator; the engine's
aggregation and ordering logic never changes.

A selector with no handler is not an error: the engine skips it, so richer
rule files written for other linters still load and run.
"""

from __future__ import annotations

from typing import Callable, Optional
from urllib.parse import urlsplit

from specgate.models import Finding, IndexFacts, Rule

SelectorHandler = Callable[[IndexFacts, Rule], list[Finding]]

_REGISTRY: dict[str, SelectorHandler] = {}


def selector(expression: str) -> Callable[[SelectorHandler], SelectorHandler]:
    """Register the decorated function as the handler for *expression*.

    Example::

        @selector("$.info.license")
        def check_license(facts: IndexFacts, rule: Rule) -> list[Finding]:
            ...
    """

    def decorator(func: SelectorHandler) -> SelectorHandler:
        _REGISTRY[expression] = func
        return func

    return decorator


def get_handler(expression: str) -> Optional[SelectorHandler]:
    """Return the handler for *expression*, or ``None`` if it is not supported."""
    return _REGISTRY.get(expression.strip())


def registered_selectors() -> list[str]:
    """Return the supported selector strings in registration order."""
    return list(_REGISTRY)


def _finding(rule: Rule, location: Optional[str] = None) -> Finding:
    return Finding(
        severity=rule.severity,
        description=rule.description,
        rule_name=rule.name,
        location=location,
    )


def is_https(url: str) -> bool:
    """Return ``True`` if *url* has an ``https`` scheme (case-insensitive)."""
    return urlsplit(url.strip()).scheme.lower() == "https"


@selector("$.components.securitySchemes")
def check_security_schemes(facts: IndexFacts, rule: Rule) -> list[Finding]:
    """One finding when the document declares no security schemes."""
    if facts.security_schemes_present:
        return []
    return [_finding(rule)]


@selector("$.info.contact")
def check_contact(facts: IndexFacts, rule: Rule) -> list[Finding]:
    """One finding when ``info.contact`` is missing."""
    if facts.contact_present:
        return []
    return [_finding(rule)]


@selector("$.servers[*].url")
def check_server_urls(facts: IndexFacts, rule: Rule) -> list[Finding]:
    """One finding per server URL that is not https, in server-list order."""
    return [_finding(rule, location=url) for url in facts.server_urls if not is_https(url)]

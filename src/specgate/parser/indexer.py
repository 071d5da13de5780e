"""Build a read-only index of document facts for the rule engine.

:func:`build_index` walks a loaded :class:`~specgate.parser.loader.Document`
once and returns an :class:`~specgate.models.IndexFacts` snapshot:

* whether security schemes are declared (``components.securitySchemes`` in
  OpenAPI 3.x, ``securityDefinitions`` in Swagger 2.0),
* whether ``info.contact`` is present,
* every server URL, in document order: root ``servers``, then path-level
  and operation-level ``servers`` (Swagger 2.0 documents contribute one URL
  per entry of ``schemes`` built from ``host`` and ``basePath``),
* structural findings: an unsupported or missing version, or else every
  error openapi-spec-validator reports for the declared version, each one
  located at the node it points to.

The rule engine never sees the node graph directly; it only consumes these
facts.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml
from openapi_spec_validator import (
    OpenAPIV2SpecValidator,
    OpenAPIV30SpecValidator,
    OpenAPIV31SpecValidator,
)
from referencing.exceptions import Unresolvable

from specgate.models import Finding, IndexFacts, Severity
from specgate.parser.loader import (
    Document,
    is_null,
    mapping_get,
    mapping_items,
    position,
    scalar_value,
    to_json_data,
)

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")


def build_index(document: Document) -> IndexFacts:
    """Index *document* and return the facts consumed by the rule engine.

    Args:
        document: A loaded document.

    Returns:
        A frozen :class:`~specgate.models.IndexFacts` snapshot.
    """
    root = document.root
    if not isinstance(root, yaml.MappingNode):
        return IndexFacts(
            structural_findings=[
                _structural("Document root must be a mapping", root)
            ]
        )

    findings = _structural_findings(document)
    facts = IndexFacts(
        security_schemes_present=_has_security_schemes(root),
        contact_present=_has_contact(root),
        server_urls=_server_urls(root),
        structural_findings=findings,
    )
    logger.debug(
        "Indexed %s: %d server URL(s), %d structural finding(s)",
        document.source,
        len(facts.server_urls),
        len(findings),
    )
    return facts


def _structural(message: str, node: Optional[yaml.Node]) -> Finding:
    return Finding(
        severity=Severity.ERROR,
        description=message,
        location=position(node) if node is not None else None,
    )


def _has_security_schemes(root: yaml.MappingNode) -> bool:
    schemes = mapping_get(mapping_get(root, "components"), "securitySchemes")
    if schemes is None:
        schemes = mapping_get(root, "securityDefinitions")
    return isinstance(schemes, yaml.MappingNode) and len(schemes.value) > 0


def _has_contact(root: yaml.MappingNode) -> bool:
    contact = mapping_get(mapping_get(root, "info"), "contact")
    return not is_null(contact)


def _server_urls(root: yaml.MappingNode) -> list[str]:
    urls = _urls_of(mapping_get(root, "servers"))

    for _, path_item in mapping_items(mapping_get(root, "paths")):
        urls.extend(_urls_of(mapping_get(path_item, "servers")))
        for method in HTTP_METHODS:
            operation = mapping_get(path_item, method)
            urls.extend(_urls_of(mapping_get(operation, "servers")))

    host = scalar_value(mapping_get(root, "host"))
    if host:
        base_path = scalar_value(mapping_get(root, "basePath")) or ""
        schemes = mapping_get(root, "schemes")
        if isinstance(schemes, yaml.SequenceNode):
            for scheme_node in schemes.value:
                scheme = scalar_value(scheme_node)
                if scheme:
                    urls.append(f"{scheme}://{host}{base_path}")

    return urls


def _urls_of(servers: Optional[yaml.Node]) -> list[str]:
    if not isinstance(servers, yaml.SequenceNode):
        return []
    urls = []
    for server in servers.value:
        url = scalar_value(mapping_get(server, "url"))
        if url is not None:
            urls.append(url)
    return urls


def _structural_findings(document: Document) -> list[Finding]:
    root = document.root
    validator_class, version_finding = _spec_validator_for(root)
    if version_finding is not None:
        return [version_finding]

    validator = validator_class(to_json_data(root), base_uri=_base_uri(document))
    findings: list[Finding] = []
    try:
        for error in validator.iter_errors():
            findings.append(_structural(error.message, _node_at(root, error.absolute_path)))
    except Unresolvable as exc:
        findings.append(
            _structural(f"Cannot follow reference while checking structure: {exc}", root)
        )
    return findings


def _spec_validator_for(
    root: yaml.MappingNode,
) -> tuple[Optional[type], Optional[Finding]]:
    """Pick the validator for the declared version, or a finding explaining why not."""
    openapi = mapping_get(root, "openapi")
    swagger = mapping_get(root, "swagger")
    if openapi is not None:
        version = scalar_value(openapi) or ""
        if version.startswith("3.0"):
            return OpenAPIV30SpecValidator, None
        if version.startswith("3.1"):
            return OpenAPIV31SpecValidator, None
        return None, _structural(f"Unsupported OpenAPI version: {version}", openapi)
    if swagger is not None:
        if scalar_value(swagger) == "2.0":
            return OpenAPIV2SpecValidator, None
        return None, _structural(
            f"Unsupported Swagger version: {scalar_value(swagger)}", swagger
        )
    return None, _structural("Missing 'openapi' field; is this an OpenAPI document?", root)


def _base_uri(document: Document) -> str:
    base = document.base
    if base is None:
        return ""
    if base.startswith(("http://", "https://")):
        return base
    return Path(base).resolve().as_uri()


def _node_at(root: yaml.Node, path: Iterable[Any]) -> yaml.Node:
    """Follow a validator error path through the node graph as far as it goes."""
    node = root
    for part in path:
        if isinstance(part, int) and isinstance(node, yaml.SequenceNode):
            if part >= len(node.value):
                break
            node = node.value[part]
            continue
        child = mapping_get(node, str(part))
        if child is None:
            break
        node = child
    return node

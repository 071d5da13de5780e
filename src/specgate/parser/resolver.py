"""Resolve ``$ref`` JSON Reference pointers in OpenAPI documents.

OpenAPI documents commonly use ``$ref`` pointers (e.g.
``{"$ref": "#/components/schemas/Pet"}``) to avoid repetition. This module
walks the document's node graph and replaces every ``$ref`` mapping, in
place, with a fresh clone of the node it points to, until no reference
remains.

Lookup is **closed** by default (see :class:`~specgate.models.ResolverConfig`):

* ``#/...`` pointers into the same document are always followed;
* relative file references (``schemas/pet.yaml#/Pet``) are followed only
  when ``allow_file_refs`` is set, relative to the referencing document;
* ``http(s)://`` references are followed only when ``allow_remote`` is set,
  and are fetched with httpx.

Targets are looked up in a snapshot of each document taken before any
replacement, so the order in which references are expanded never changes the
result. Each external document is loaded once per call.

Circular references are detected with the set of references currently on the
expansion stack. With :attr:`~specgate.models.CyclePolicy.KEEP` (the default)
the ``$ref`` mapping at the cycle point is left as-is and reported in
:attr:`~specgate.models.ResolutionResult.circular_references`; with
:attr:`~specgate.models.CyclePolicy.FAIL` the cycle is an error.

Every problem found in one document is collected and raised together as a
single :class:`~specgate.exceptions.ResolutionError`.

Public functions: :func:`index_references` and :func:`resolve_references`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urljoin, urlsplit

import httpx
import yaml

from specgate.exceptions import ResolutionError, SpecgateError
from specgate.models import (
    CircularReference,
    CyclePolicy,
    ResolutionResult,
    ResolverConfig,
)
from specgate.parser.encoding import normalize
from specgate.parser.loader import (
    Document,
    clone,
    load_document,
    mapping_get,
    mapping_items,
    position,
    read_document,
)

logger = logging.getLogger(__name__)

REF_KEY = "$ref"

_MAX_POINTER_HOPS = 32

# A reference key: (absolute document location, JSON pointer).
_RefKey = tuple[str, str]


@dataclass
class ReferenceSite:
    """One ``$ref`` occurrence in a node graph.

    Attributes:
        ref: The reference string, e.g. ``"#/components/schemas/Pet"``.
        path: JSON pointer of the mapping that holds the ``$ref``.
        node: The mapping node itself.
    """

    ref: str
    path: str
    node: yaml.MappingNode

    @property
    def location(self) -> str:
        """Source position of the reference, ``line N, column M``."""
        return position(self.node)


def index_references(root: yaml.Node) -> list[ReferenceSite]:
    """Return every ``$ref`` in *root*, in document order.

    Only mappings whose ``$ref`` value is a scalar count as references, so a
    schema property literally named ``$ref`` is not mistaken for one.
    """
    sites: list[ReferenceSite] = []
    _collect_references(root, "", sites, set())
    return sites


def _collect_references(
    node: yaml.Node, path: str, sites: list[ReferenceSite], seen: set[int]
) -> None:
    if id(node) in seen:
        return
    seen.add(id(node))
    if isinstance(node, yaml.MappingNode):
        ref = _ref_of(node)
        if ref is not None:
            sites.append(ReferenceSite(ref=ref, path=path or "/", node=node))
        for key, value in mapping_items(node):
            _collect_references(value, f"{path}/{escape_pointer_token(key)}", sites, seen)
    elif isinstance(node, yaml.SequenceNode):
        for index, item in enumerate(node.value):
            _collect_references(item, f"{path}/{index}", sites, seen)


def _ref_of(node: yaml.Node) -> Optional[str]:
    """Return the ``$ref`` string of a reference mapping, else ``None``."""
    ref_node = mapping_get(node, REF_KEY)
    if isinstance(ref_node, yaml.ScalarNode) and ref_node.tag == "tag:yaml.org,2002:str":
        return ref_node.value
    return None


def escape_pointer_token(token: str) -> str:
    """Escape a mapping key for use in a JSON pointer (RFC 6901)."""
    return token.replace("~", "~0").replace("/", "~1")


def unescape_pointer_token(token: str) -> str:
    """Undo :func:`escape_pointer_token`; percent-escapes are decoded first."""
    return unquote(token).replace("~1", "/").replace("~0", "~")


def resolve_references(
    document: Document, config: Optional[ResolverConfig] = None
) -> ResolutionResult:
    """Resolve every ``$ref`` in *document*, mutating it in place.

    Args:
        document: The loaded document. ``document.root`` is replaced when
            the root itself is a reference.
        config: Lookup and cycle policy. Defaults to a closed index that
            keeps circular references.

    Returns:
        A :class:`~specgate.models.ResolutionResult` with the number of
        references expanded and any circular references left in place.

    Raises:
        ResolutionError: If any reference is disallowed by the lookup
            policy, points at a missing location, cannot be loaded, or
            (with ``on_cycle=fail``) closes a cycle.

    Example::

        document = read_document("petstore.yaml")
        result = resolve_references(document)
        print(dump_document(document))
    """
    resolver = _Resolver(document, config or ResolverConfig())
    return resolver.run()


class _Resolver:
    """State for one :func:`resolve_references` call."""

    def __init__(self, document: Document, config: ResolverConfig) -> None:
        self._document = document
        self._config = config
        self._root_location = _location_of(document)
        self._snapshots: dict[str, yaml.Node] = {
            self._root_location: clone(document.root),
        }
        self._loaded: list[str] = []
        self._problems: list[str] = []
        self._circular: list[CircularReference] = []
        self._count = 0

    def run(self) -> ResolutionResult:
        sites = index_references(self._document.root)
        logger.debug(
            "Resolving %d reference(s) in %s", len(sites), self._document.source
        )

        try:
            self._document.root = self._resolve(
                self._document.root, self._root_location, frozenset(), ""
            )
        except RecursionError as exc:
            raise ResolutionError(
                "Reference nesting too deep to expand", path=self._document.source
            ) from exc

        if self._problems:
            if len(self._problems) == 1:
                message = self._problems[0]
            else:
                message = f"{len(self._problems)} references could not be resolved"
            raise ResolutionError(message, problems=self._problems)

        for circular in self._circular:
            logger.debug("Kept circular reference %s at %s", circular.ref, circular.path)

        return ResolutionResult(
            resolved_count=self._count,
            circular_references=self._circular,
            documents_loaded=self._loaded,
        )

    # ------------------------------------------------------------------
    # Walking
    # ------------------------------------------------------------------

    def _resolve(
        self, node: yaml.Node, location: str, seen: frozenset[_RefKey], path: str
    ) -> yaml.Node:
        """Resolve references under *node* and return its replacement."""
        if isinstance(node, yaml.MappingNode):
            ref = _ref_of(node)
            if ref is not None:
                return self._expand(node, ref, location, seen, path)
            for index, (key_node, value_node) in enumerate(node.value):
                child_path = f"{path}/{escape_pointer_token(str(key_node.value))}"
                node.value[index] = (
                    key_node,
                    self._resolve(value_node, location, seen, child_path),
                )
            return node

        if isinstance(node, yaml.SequenceNode):
            for index, item in enumerate(node.value):
                node.value[index] = self._resolve(item, location, seen, f"{path}/{index}")
            return node

        return node

    def _expand(
        self,
        node: yaml.MappingNode,
        ref: str,
        location: str,
        seen: frozenset[_RefKey],
        path: str,
    ) -> yaml.Node:
        """Replace the reference mapping *node* with its resolved target."""
        where = path or "/"
        try:
            key = self._locate(ref, location)
            if key in seen:
                return self._on_cycle(node, ref, where)
            target = self._lookup(key[0], key[1])
        except SpecgateError as exc:
            self._problems.append(f"{where} ({position(node)}): {exc}")
            return node

        self._count += 1
        resolved = self._resolve(clone(target), key[0], seen | {key}, path)

        siblings = [
            (k, v) for k, v in node.value
            if not (isinstance(k, yaml.ScalarNode) and k.value == REF_KEY)
        ]
        if siblings:
            if isinstance(resolved, yaml.MappingNode):
                for key_node, value_node in siblings:
                    child_path = f"{path}/{escape_pointer_token(str(key_node.value))}"
                    value = self._resolve(value_node, location, seen, child_path)
                    _set_item(resolved, key_node, value)
            else:
                logger.debug("Dropping keys beside %s at %s: target is not a mapping", ref, where)
        return resolved

    def _on_cycle(self, node: yaml.MappingNode, ref: str, where: str) -> yaml.Node:
        if self._config.on_cycle == CyclePolicy.FAIL:
            raise ResolutionError(f"Circular reference '{ref}'")
        self._circular.append(CircularReference(ref=ref, path=where))
        return node

    # ------------------------------------------------------------------
    # Locating targets
    # ------------------------------------------------------------------

    def _locate(self, ref: str, location: str) -> _RefKey:
        """Turn *ref*, found in the document at *location*, into an absolute key."""
        target, _, fragment = ref.partition("#")
        if fragment and not fragment.startswith("/"):
            raise ResolutionError(
                f"Unsupported reference '{ref}': only JSON pointer fragments (#/...) are handled"
            )

        if target == "":
            return location, fragment

        scheme = urlsplit(target).scheme.lower()
        if scheme in ("http", "https"):
            return self._remote(ref, target), fragment
        if scheme and len(scheme) > 1:
            raise ResolutionError(f"Unsupported reference scheme '{scheme}' in '{ref}'")

        if _is_url(location):
            return self._remote(ref, urljoin(location, target)), fragment

        if not self._config.allow_file_refs:
            raise ResolutionError(
                f"File reference '{ref}' is not allowed (enable allow_file_refs)"
            )
        if location.startswith("<"):
            base = Path.cwd()
        else:
            base = Path(location).parent
        return str((base / target).resolve()), fragment

    def _remote(self, ref: str, url: str) -> str:
        if not self._config.allow_remote:
            raise ResolutionError(
                f"Remote reference '{ref}' is not allowed (enable allow_remote)"
            )
        return url

    def _lookup(self, location: str, pointer: str) -> yaml.Node:
        """Return the node at *pointer* in the snapshot of the document at *location*."""
        current = self._snapshot(location)
        if pointer in ("", "/"):
            return current

        for raw in pointer[1:].split("/"):
            segment = unescape_pointer_token(raw)
            current = self._step(current, segment, location, pointer)
        return current

    def _step(
        self, current: yaml.Node, segment: str, location: str, pointer: str
    ) -> yaml.Node:
        # A pointer may pass through a reference, e.g. #/components/schemas/A/properties/id
        # where A is itself {"$ref": ...}; follow local hops before giving up.
        for _ in range(_MAX_POINTER_HOPS):
            if isinstance(current, yaml.MappingNode):
                child = mapping_get(current, segment)
                if child is not None:
                    return child
                ref = _ref_of(current)
                if ref is not None and ref.startswith("#"):
                    current = self._lookup(location, ref[1:])
                    continue
                raise ResolutionError(
                    f"Cannot resolve '#{pointer}': key '{segment}' not found"
                )
            if isinstance(current, yaml.SequenceNode):
                try:
                    return current.value[int(segment)]
                except (ValueError, IndexError) as exc:
                    raise ResolutionError(
                        f"Cannot resolve '#{pointer}': invalid array index '{segment}'"
                    ) from exc
            raise ResolutionError(
                f"Cannot resolve '#{pointer}': cannot navigate into a scalar at '{segment}'"
            )
        raise ResolutionError(f"Cannot resolve '#{pointer}': too many reference hops")

    # ------------------------------------------------------------------
    # Loading documents
    # ------------------------------------------------------------------

    def _snapshot(self, location: str) -> yaml.Node:
        if location not in self._snapshots:
            if _is_url(location):
                document = self._fetch(location)
            else:
                document = read_document(location)
            self._snapshots[location] = document.root
            self._loaded.append(location)
            logger.debug("Loaded referenced document %s", location)
        return self._snapshots[location]

    def _fetch(self, url: str) -> Document:
        """Fetch a remote document. Only reachable when ``allow_remote`` is set."""
        try:
            response = httpx.get(
                url, timeout=self._config.remote_timeout, follow_redirects=True
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ResolutionError(
                f"HTTP {exc.response.status_code} fetching {url}"
            ) from exc
        except httpx.RequestError as exc:
            raise ResolutionError(f"Failed to fetch {url}: {exc}") from exc
        return load_document(normalize(response.content), source=url)


def _location_of(document: Document) -> str:
    base = document.base
    if base is None:
        return document.source
    if _is_url(base):
        return base
    return str(Path(base).resolve())


def _is_url(location: str) -> bool:
    return location.startswith(("http://", "https://"))


def _set_item(mapping: yaml.MappingNode, key_node: yaml.Node, value: yaml.Node) -> None:
    """Set *key_node* to *value* in *mapping*, replacing an existing scalar key."""
    for index, (existing, _) in enumerate(mapping.value):
        if (
            isinstance(existing, yaml.ScalarNode)
            and isinstance(key_node, yaml.ScalarNode)
            and existing.value == key_node.value
        ):
            mapping.value[index] = (existing, value)
            return
    mapping.value.append((key_node, value))

"""Load OpenAPI documents into an order-preserving node graph.

Unlike a plain ``yaml.safe_load`` dict, the PyYAML *node* graph produced by
``yaml.compose`` keeps everything the resolver and serializer need:

* mapping key order exactly as authored,
* the resolved tag of every scalar (string vs int vs bool vs null) and its
  quoting style,
* a ``start_mark`` on every node, used to report 1-based ``line``/``column``
  positions in findings and errors.

YAML merge keys (``<<: *base``) are expanded right after composing, so the
rest of the package only ever sees plain mappings.

The graph is wrapped in a :class:`Document` together with the location it
was read from, which the resolver uses as the base for relative references.

Public functions:

* :func:`load_document` -- Parse UTF-8 bytes into a :class:`Document`.
* :func:`read_document` -- Read, normalise, and parse a file.
* :func:`mapping_get`, :func:`mapping_items`, :func:`scalar_value`,
  :func:`to_python`, :func:`to_json_data` -- Small helpers for walking the
  node graph.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional

import yaml

from specgate.exceptions import DocumentSyntaxError, EncodingError, SpecgateError
from specgate.parser.encoding import read_normalized

_MERGE_TAG = "tag:yaml.org,2002:merge"


@dataclass
class Document:
    """A loaded document: one root node plus the place it came from.

    Attributes:
        root: The root node (almost always a ``yaml.MappingNode``).
        source: The file path or URL the document was read from, or a
            placeholder such as ``"<bytes>"``.
    """

    root: yaml.Node
    source: str = "<bytes>"

    @property
    def base(self) -> Optional[str]:
        """Location that relative references are resolved against, if any."""
        if self.source.startswith("<"):
            return None
        return self.source


def load_document(data: bytes, source: str = "<bytes>") -> Document:
    """Parse UTF-8 bytes into a :class:`Document`.

    JSON input is accepted as well, since JSON documents are valid YAML.

    Args:
        data: UTF-8 encoded document bytes (see
            :func:`~specgate.parser.encoding.normalize`).
        source: Where the bytes came from, used in messages and as the base
            for relative references.

    Returns:
        The loaded document.

    Raises:
        EncodingError: If *data* is not valid UTF-8.
        DocumentSyntaxError: If the content is not well-formed, empty,
            contains more than one document, repeats a mapping key, or
            holds an alias to one of its own ancestors.
    """
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise EncodingError(
            f"Input is not valid UTF-8 at byte {exc.start}: {exc.reason}"
        ) from exc

    try:
        root = yaml.compose(text, Loader=yaml.SafeLoader)
    except yaml.MarkedYAMLError as exc:
        mark = exc.problem_mark or exc.context_mark
        problem = exc.problem or exc.context or "malformed document"
        if mark is None:
            raise DocumentSyntaxError(f"Invalid YAML/JSON: {problem}") from exc
        raise DocumentSyntaxError(
            f"Invalid YAML/JSON: {problem}",
            line=mark.line + 1,
            column=mark.column + 1,
        ) from exc
    except yaml.YAMLError as exc:
        raise DocumentSyntaxError(f"Invalid YAML/JSON: {exc}") from exc

    if root is None:
        raise DocumentSyntaxError("Document is empty")

    _check_alias_cycles(root)
    _check_duplicate_keys(root)
    _flatten_merge_keys(root)
    return Document(root=root, source=source)


def read_document(path: str | Path) -> Document:
    """Read *path*, normalise its encoding, and load it.

    Raises:
        IOError_: If the file cannot be read.
        EncodingError: If the bytes cannot be transcoded.
        DocumentSyntaxError: If the content is not well-formed.
    """
    data = read_normalized(path)
    try:
        return load_document(data, source=str(path))
    except SpecgateError as exc:
        raise exc.with_context(path=str(path))


def _check_duplicate_keys(root: yaml.Node) -> None:
    """Reject mappings that repeat a scalar key.

    PyYAML silently keeps the last value for a repeated key, which would make
    the resolved output differ from what the author sees.
    """
    seen_nodes: set[int] = set()
    stack = [root]
    while stack:
        node = stack.pop()
        if id(node) in seen_nodes:
            continue
        seen_nodes.add(id(node))

        if isinstance(node, yaml.MappingNode):
            keys: set[tuple[str, str]] = set()
            for key_node, value_node in node.value:
                if isinstance(key_node, yaml.ScalarNode) and not _is_merge_key(key_node):
                    identity = (key_node.tag, key_node.value)
                    if identity in keys:
                        raise DocumentSyntaxError(
                            f"Duplicate key '{key_node.value}'",
                            line=key_node.start_mark.line + 1,
                            column=key_node.start_mark.column + 1,
                        )
                    keys.add(identity)
                stack.append(key_node)
                stack.append(value_node)
        elif isinstance(node, yaml.SequenceNode):
            stack.extend(node.value)


def _children(node: yaml.Node) -> list[yaml.Node]:
    if isinstance(node, yaml.MappingNode):
        return [child for pair in node.value for child in pair]
    if isinstance(node, yaml.SequenceNode):
        return list(node.value)
    return []


def _check_alias_cycles(root: yaml.Node) -> None:
    """Reject an alias that points back into the node that anchors it.

    ``x: &a {child: *a}`` composes into a node that contains itself, which
    has no finite expansion.
    """
    active: set[int] = set()
    finished: set[int] = set()
    stack: list[tuple[yaml.Node, bool]] = [(root, False)]
    while stack:
        node, leaving = stack.pop()
        if leaving:
            active.discard(id(node))
            finished.add(id(node))
            continue
        if id(node) in active:
            raise DocumentSyntaxError(
                "Recursive alias: a node contains an alias to itself",
                line=node.start_mark.line + 1,
                column=node.start_mark.column + 1,
            )
        if id(node) in finished:
            continue
        active.add(id(node))
        stack.append((node, True))
        stack.extend((child, False) for child in reversed(_children(node)))


def _is_merge_key(node: yaml.Node) -> bool:
    return isinstance(node, yaml.ScalarNode) and node.tag == _MERGE_TAG


def _merge_sources(value_node: yaml.Node) -> list[yaml.MappingNode]:
    if isinstance(value_node, yaml.MappingNode):
        return [value_node]
    if isinstance(value_node, yaml.SequenceNode) and all(
        isinstance(item, yaml.MappingNode) for item in value_node.value
    ):
        return list(value_node.value)
    raise DocumentSyntaxError(
        "Merge key '<<' expects a mapping or a list of mappings",
        line=value_node.start_mark.line + 1,
        column=value_node.start_mark.column + 1,
    )


def _flatten_merge_keys(root: yaml.Node) -> None:
    """Expand ``<<`` merge keys in place, as ``SafeConstructor.flatten_mapping`` does.

    Merged pairs take the place of the ``<<`` entry. Keys written on the
    mapping itself win over merged ones, and an earlier merge source wins
    over a later one.
    """
    flattened: set[int] = set()

    def flatten(node: yaml.Node) -> None:
        if id(node) in flattened:
            return
        flattened.add(id(node))
        for child in _children(node):
            flatten(child)
        if not isinstance(node, yaml.MappingNode):
            return
        if not any(_is_merge_key(key_node) for key_node, _ in node.value):
            return

        taken = {
            key_node.value
            for key_node, _ in node.value
            if isinstance(key_node, yaml.ScalarNode) and not _is_merge_key(key_node)
        }
        pairs: list[tuple[yaml.Node, yaml.Node]] = []
        for key_node, value_node in node.value:
            if not _is_merge_key(key_node):
                pairs.append((key_node, value_node))
                continue
            for source in _merge_sources(value_node):
                for merged_key, merged_value in source.value:
                    if isinstance(merged_key, yaml.ScalarNode):
                        if merged_key.value in taken:
                            continue
                        taken.add(merged_key.value)
                    pairs.append((merged_key, merged_value))
        node.value = pairs

    flatten(root)


# --- Node helpers ---


def mapping_items(node: Optional[yaml.Node]) -> Iterator[tuple[str, yaml.Node]]:
    """Yield ``(key, value_node)`` pairs of a mapping node with scalar keys.

    Yields nothing when *node* is not a mapping.
    """
    if not isinstance(node, yaml.MappingNode):
        return
    for key_node, value_node in node.value:
        if isinstance(key_node, yaml.ScalarNode):
            yield key_node.value, value_node


def mapping_get(node: Optional[yaml.Node], key: str) -> Optional[yaml.Node]:
    """Return the value node stored under *key*, or ``None``."""
    for item_key, value_node in mapping_items(node):
        if item_key == key:
            return value_node
    return None


def scalar_value(node: Optional[yaml.Node]) -> Optional[str]:
    """Return the raw text of a scalar node, or ``None`` for anything else."""
    if isinstance(node, yaml.ScalarNode):
        return node.value
    return None


def is_null(node: Optional[yaml.Node]) -> bool:
    """Return ``True`` for a missing node or an explicit YAML null."""
    return node is None or (
        isinstance(node, yaml.ScalarNode) and node.tag == "tag:yaml.org,2002:null"
    )


def clone(node: yaml.Node) -> yaml.Node:
    """Return a deep copy of *node* that shares no node objects with it.

    Marks are shared (they are immutable), so positions still point at the
    original source. Nodes reachable through YAML aliases are copied once
    per occurrence, so the copy contains no aliases.
    """
    if isinstance(node, yaml.MappingNode):
        return yaml.MappingNode(
            node.tag,
            [(clone(k), clone(v)) for k, v in node.value],
            node.start_mark,
            node.end_mark,
            flow_style=node.flow_style,
        )
    if isinstance(node, yaml.SequenceNode):
        return yaml.SequenceNode(
            node.tag,
            [clone(item) for item in node.value],
            node.start_mark,
            node.end_mark,
            flow_style=node.flow_style,
        )
    return yaml.ScalarNode(
        node.tag, node.value, node.start_mark, node.end_mark, style=node.style
    )


def to_python(node: yaml.Node) -> Any:  # noqa: ANN401
    """Convert a node graph into plain Python objects (dicts, lists, scalars)."""
    loader = yaml.SafeLoader("")
    try:
        return loader.construct_document(node)
    finally:
        loader.dispose()


class _JSONDataLoader(yaml.SafeLoader):
    """SafeLoader that keeps timestamps and binary scalars as their text."""


_JSONDataLoader.add_constructor(
    "tag:yaml.org,2002:timestamp", yaml.SafeLoader.construct_yaml_str
)
_JSONDataLoader.add_constructor(
    "tag:yaml.org,2002:binary", yaml.SafeLoader.construct_yaml_str
)


def to_json_data(node: yaml.Node) -> Any:  # noqa: ANN401
    """Convert a node graph into data a JSON Schema validator accepts.

    Mapping keys are always strings (``200:`` becomes ``"200"``), and dates
    stay strings instead of becoming ``datetime.date`` objects.
    """
    loader = _JSONDataLoader("")
    try:
        return _json_value(loader, node)
    finally:
        loader.dispose()


def _json_value(loader: yaml.SafeLoader, node: yaml.Node) -> Any:  # noqa: ANN401
    if isinstance(node, yaml.MappingNode):
        return {
            _json_key(loader, key_node): _json_value(loader, value_node)
            for key_node, value_node in node.value
        }
    if isinstance(node, yaml.SequenceNode):
        return [_json_value(loader, item) for item in node.value]
    return loader.construct_object(node)


def _json_key(loader: yaml.SafeLoader, node: yaml.Node) -> str:
    if isinstance(node, yaml.ScalarNode):
        return node.value
    return str(_json_value(loader, node))


def position(node: yaml.Node) -> str:
    """Format a node's start position as ``line N, column M`` (1-based)."""
    mark = node.start_mark
    return f"line {mark.line + 1}, column {mark.column + 1}"

"""Emit a (resolved) document as YAML.

Serialisation works on the node graph directly with ``yaml.serialize``, so
key order, scalar tags, and scalar quoting survive untouched. Two things are
normalised so that output is stable across inputs:

* non-empty mappings and sequences are written in block style, even when
  the input was JSON or used ``{...}`` flow collections;
* the graph is cloned before emitting, so aliases in the input are written
  out in full and no ``&id001`` anchors appear.

The same input always produces byte-identical output.
"""

from __future__ import annotations

from pathlib import Path

import yaml

from specgate.config import atomic_write
from specgate.exceptions import IOError_
from specgate.parser.loader import Document, clone

OUTPUT_MODE = 0o644
"""Permission bits of written output documents."""

_LINE_WIDTH = 4096


def dump_document(document: Document) -> str:
    """Serialise *document* to a YAML string without mutating it."""
    root = clone(document.root)
    _force_block_style(root)
    return yaml.serialize(
        root,
        Dumper=yaml.SafeDumper,
        allow_unicode=True,
        width=_LINE_WIDTH,
        indent=2,
    )


def write_document(document: Document, path: str | Path) -> Path:
    """Serialise *document* and write it atomically to *path* with mode 0644.

    Returns:
        The path written.

    Raises:
        IOError_: If the file cannot be written.
    """
    target = Path(path)
    text = dump_document(document)
    try:
        atomic_write(target, text, mode=OUTPUT_MODE)
    except OSError as exc:
        raise IOError_(f"Failed to write output: {exc}", path=str(target)) from exc
    return target


def _force_block_style(node: yaml.Node) -> None:
    stack = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, yaml.MappingNode):
            if current.value:
                current.flow_style = False
            for key_node, value_node in current.value:
                stack.append(key_node)
                stack.append(value_node)
        elif isinstance(current, yaml.SequenceNode):
            if current.value:
                current.flow_style = False
            stack.extend(current.value)

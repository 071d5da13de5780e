"""Document layer -- normalise, load, index, resolve ``$ref`` pointers, and emit.

This sub-package turns a raw OpenAPI document (YAML or JSON, any common UTF
encoding) into an order-preserving node graph, exposes the facts the rule
engine checks, expands every reference in place, and writes the result back
out as YAML.

Typical usage::

    from specgate.parser import read_document, resolve_references, dump_document

    document = read_document("swagger.yaml")
    resolve_references(document)
    print(dump_document(document))

Sub-modules:

* :mod:`~specgate.parser.encoding` -- BOM stripping and UTF-8 transcoding.
* :mod:`~specgate.parser.loader` -- :class:`Document` and node helpers.
* :mod:`~specgate.parser.indexer` -- :func:`build_index` for rule facts.
* :mod:`~specgate.parser.resolver` -- Reference index and resolution with
  cycle and lookup policies.
* :mod:`~specgate.parser.serializer` -- Deterministic YAML output.
"""

from specgate.parser.encoding import normalize, read_normalized
from specgate.parser.indexer import build_index
from specgate.parser.loader import Document, load_document, read_document
from specgate.parser.resolver import index_references, resolve_references
from specgate.parser.serializer import dump_document, write_document

__all__ = [
    "Document",
    "build_index",
    "dump_document",
    "index_references",
    "load_document",
    "normalize",
    "read_document",
    "read_normalized",
    "resolve_references",
    "write_document",
]

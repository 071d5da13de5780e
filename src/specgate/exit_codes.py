"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific failure class and is referenced by the
corresponding :class:`~specgate.exceptions.SpecgateError` subclass.
CI scripts comparing two spec revisions can inspect the exit code to tell a
rule violation apart from a broken document without parsing stderr.

Example::

    $ specgate run oldSwagger.yaml swagger.yaml rules.yaml
    $ echo $?
    3   # EXIT_VALIDATION_FAILURE -- findings were reported
"""

EXIT_SUCCESS = 0
"""Both documents passed validation and were resolved."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments."""

EXIT_VALIDATION_FAILURE = 3
"""A document produced findings at or above the failure threshold."""

EXIT_DOCUMENT_ERROR = 4
"""A document could not be decoded or parsed."""

EXIT_RULE_FILE_ERROR = 5
"""The rule file is malformed or a rule is missing a required field."""

EXIT_RESOLUTION_ERROR = 6
"""A ``$ref`` pointer could not be resolved."""

EXIT_IO_ERROR = 7
"""An input could not be read or an output could not be written."""

EXIT_INTERRUPTED = 130
"""The process was interrupted with Ctrl-C."""

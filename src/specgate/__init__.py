"""specgate -- Validate OpenAPI documents with custom rules and resolve their $refs.

The package checks an *old* and a *new* OpenAPI/Swagger document against a
small YAML rule file, then writes a fully dereferenced copy of each one.
Every ``$ref`` is replaced with a copy of its target in the output.

Typical workflow::

    specgate run oldSwagger.yaml swagger.yaml rules.yaml
    # -> oldSwaggerResolve.yaml, swaggerResolve.yaml

Modules:
    app: Typer application and CLI entry point.
    pipeline: The validate-then-resolve state machine.
    parser: Document loading, indexing, reference resolution, serialization.
    rules: Rule-file loading and evaluation.
    models: Pydantic models shared across the entire package.
    config: XDG-aware configuration and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"

"""Error types raised by the doc-detective pipeline."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when configuration is missing, invalid, or yields nothing to run."""


class SchemaNotFoundError(ConfigurationError):
    """Raised when a schema key isn't present in the registry."""

    def __init__(self, schema_key: str) -> None:
        super().__init__(f"Schema not found: {schema_key}")
        self.schema_key = schema_key


class UnsupportedTransformError(RuntimeError):
    """Raised when no migration exists between two schema keys."""


class MigrationContractError(AssertionError):
    """Raised when a migration yields an object the target schema rejects."""


class RemoteRunError(RuntimeError):
    """Raised when the orchestration API rejects or fails a request."""


class RunnerStartError(RuntimeError):
    """Raised when an automation session can't be created for a context."""

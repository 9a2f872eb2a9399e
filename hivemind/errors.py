"""Error types and helpers for the HiveMind core."""

from __future__ import annotations

import re

import click


class HiveMindError(Exception):
    """Base class for all errors raised by the core services."""


class PatternStoreError(HiveMindError):
    """Raised when the pattern store cannot serve a read or write."""


class SchemaNotInitializedError(PatternStoreError, click.ClickException):
    """Raised when the database schema has not been created."""


class ProviderError(HiveMindError):
    """A single model provider call failed."""

    def __init__(self, provider: str, cause: BaseException | str) -> None:
        self.provider = provider
        self.cause = cause
        super().__init__(f"{provider}: {cause}")


class AllProvidersFailedError(HiveMindError):
    """Every provider of a consensus request failed."""

    def __init__(self, failures: dict[str, str]) -> None:
        self.failures = failures
        detail = ", ".join(f"{name} ({reason})" for name, reason in failures.items())
        super().__init__(f"All AI models failed to respond: {detail or 'no providers configured'}")


class ConsensusCancelledError(HiveMindError):
    """The caller abandoned a consensus request before all providers settled."""


class InvalidThresholdError(HiveMindError, ValueError):
    """Raised for a similarity threshold outside [0, 1]."""


_PG_MISSING_RELATION_RE = re.compile(r'relation "(?P<table>[^"]+)" does not exist', re.IGNORECASE)
_SQLITE_MISSING_TABLE_RE = re.compile(r"no such table:\s*(?P<table>[A-Za-z0-9_]+)", re.IGNORECASE)


def _unwrap_exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def missing_table_name(exc: BaseException) -> str | None:
    """Best-effort extraction of the missing table name from a DB exception."""
    for e in _unwrap_exception_chain(exc):
        message = str(e)
        match = _PG_MISSING_RELATION_RE.search(message) or _SQLITE_MISSING_TABLE_RE.search(message)
        if match:
            return match.group("table")
    return None


def is_schema_missing_error(exc: BaseException) -> bool:
    """Return True if the exception looks like a missing-table error."""
    if missing_table_name(exc):
        return True

    # Fallback for drivers that don't format errors consistently.
    for e in _unwrap_exception_chain(exc):
        message = str(e).lower()
        if "undefinedtableerror" in message:
            return True
    return False


def schema_not_initialized_message(exc: BaseException) -> str:
    table = missing_table_name(exc)
    table_hint = f" (missing table `{table}`)" if table else ""
    return "\n".join(
        [
            f"Database schema is not initialized{table_hint}.",
            "Run: `hivemind init-db`",
        ]
    )

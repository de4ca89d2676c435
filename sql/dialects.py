"""
Dialect registry.

Maps a dialect name to the pair of grammar factories (query + schema) used
by the client. The four built-in dialects register themselves on import;
additional dialects can be registered at runtime without touching the
client.

Example:
    >>> dialect = get_dialect('postgresql')
    >>> dialect.name
    'postgres'
    >>> dialect.query_grammar().wrap('users')
    '"users"'
"""

from dataclasses import dataclass
from typing import Callable, Dict

from core.config import CLIENT_ALIASES
from sql.query_grammar import MssqlGrammar, MySqlGrammar, OracleGrammar, PostgresGrammar, QueryGrammar
from sql.schema_grammar import (
    MssqlSchemaGrammar,
    MySqlSchemaGrammar,
    OracleSchemaGrammar,
    PostgresSchemaGrammar,
    SchemaGrammar,
)


@dataclass(frozen=True)
class Dialect:
    """Grammar factories for one dialect."""

    name: str
    query_grammar_factory: Callable[[], QueryGrammar]
    schema_grammar_factory: Callable[[QueryGrammar], SchemaGrammar]

    def query_grammar(self) -> QueryGrammar:
        return self.query_grammar_factory()

    def schema_grammar(self, query_grammar: QueryGrammar = None) -> SchemaGrammar:
        return self.schema_grammar_factory(query_grammar or self.query_grammar())


_REGISTRY: Dict[str, Dialect] = {}


def register_dialect(
    name: str,
    query_grammar_factory: Callable[[], QueryGrammar],
    schema_grammar_factory: Callable[[QueryGrammar], SchemaGrammar]
) -> Dialect:
    """Register (or replace) the grammar factories for a dialect name."""
    if not name or not isinstance(name, str):
        raise ValueError("Dialect must define a non-empty name")
    dialect = Dialect(name.lower(), query_grammar_factory, schema_grammar_factory)
    _REGISTRY[dialect.name] = dialect
    return dialect


def get_dialect(name: str) -> Dialect:
    """Look up a dialect by name or alias (case-insensitive).

    Raises:
        ValueError: If no dialect is registered under that name
    """
    key = (name or '').strip().lower()
    key = CLIENT_ALIASES.get(key, key)
    if key not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY))
        raise ValueError(f"Unknown dialect '{name}'. Available: {available}")
    return _REGISTRY[key]


def available_dialects() -> Dict[str, Dialect]:
    return dict(_REGISTRY)


register_dialect('postgres', PostgresGrammar, PostgresSchemaGrammar)
register_dialect('mysql', MySqlGrammar, MySqlSchemaGrammar)
register_dialect('mssql', MssqlGrammar, MssqlSchemaGrammar)
register_dialect('oracle', OracleGrammar, OracleSchemaGrammar)

"""
Portable column types for the ml_ tables.

JSONType stores evidence payloads (signals, conditions, trigger data) as
JSONB on PostgreSQL and plain JSON on SQLite, so the same models serve
production and the in-memory test database.
"""

from typing import Any, Callable, Optional

from sqlalchemy import JSON, TypeDecorator
from sqlalchemy.dialects import postgresql


class JSONType(TypeDecorator):
    """JSON column; NULL reads back as `empty()` when one is given."""

    impl = JSON
    cache_ok = True

    def __init__(self, empty: Optional[Callable[[], Any]] = None, **kwargs):
        super().__init__(**kwargs)
        self.empty = empty

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.JSONB(none_as_null=True))
        return dialect.type_descriptor(JSON(none_as_null=True))

    def process_result_value(self, value, dialect):
        if value is None and self.empty is not None:
            return self.empty()
        return value

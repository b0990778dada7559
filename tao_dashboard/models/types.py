"""Shared SQLAlchemy column types used across the snapshot models."""

from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.types import Numeric, String, TypeDecorator


class ExactDecimal(TypeDecorator):
    """Decimal column that round-trips every digit.

    PostgreSQL stores NUMERIC(36, 18). Other backends (SQLite) store the plain
    decimal string, since their NUMERIC goes through a binary float.
    """

    impl = String(64)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Numeric(36, 18, asdecimal=True))
        return dialect.type_descriptor(String(64))

    def process_bind_param(self, value: Any, dialect):
        if value is None:
            return None
        try:
            parsed = value if isinstance(value, Decimal) else Decimal(str(value))
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid numeric value for ExactDecimal: {value!r}") from exc
        if not parsed.is_finite():
            raise ValueError(f"Non-finite value for ExactDecimal: {value!r}")
        if dialect.name == "postgresql":
            return parsed
        return format(parsed, "f")

    def process_result_value(self, value: Any, dialect):
        if value is None:
            return None
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))

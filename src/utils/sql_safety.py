"""
SQL safety utilities for preventing SQL injection.

Provides identifier validation and quoting functions for safe SQL query
construction. Identifiers only ever come from the masking rule registry,
but they are still validated and quoted before they reach a statement.
"""

import re


# Strict ASCII-only patterns for SQL identifiers
VALID_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
VALID_SCHEMA_TABLE = re.compile(
    r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)?$"
)


def validate_identifier(identifier: str) -> None:
    """
    Validate a SQL identifier (table name, column name, etc.).

    Args:
        identifier: The identifier to validate

    Raises:
        ValueError: If the identifier contains invalid characters
    """
    if not identifier:
        raise ValueError("SQL identifier cannot be empty")

    if not isinstance(identifier, str) or not VALID_IDENTIFIER.match(identifier):
        raise ValueError(
            f"Invalid SQL identifier: {identifier!r}. "
            "Only ASCII letters, digits, and underscores are allowed, "
            "and must start with a letter or underscore."
        )


def validate_schema_table(schema_table: str) -> None:
    """
    Validate a schema.table identifier.

    Args:
        schema_table: The schema.table identifier to validate

    Raises:
        ValueError: If the identifier format is invalid
    """
    if not schema_table:
        raise ValueError("Schema.table identifier cannot be empty")

    if not isinstance(schema_table, str) or not VALID_SCHEMA_TABLE.match(schema_table):
        raise ValueError(
            f"Invalid schema.table identifier: {schema_table!r}. "
            "Only ASCII letters, digits, and underscores are allowed."
        )


def quote_identifier(identifier: str) -> str:
    """
    Safely quote a PostgreSQL identifier after validation.

    Args:
        identifier: The identifier to quote (table name, column name, etc.)

    Returns:
        Double-quoted identifier safe for use in SQL

    Raises:
        ValueError: If the identifier is invalid
    """
    validate_identifier(identifier)
    return f'"{identifier}"'


def quote_schema_table(schema_table: str) -> str:
    """
    Safely quote a schema.table identifier after validation.

    Args:
        schema_table: The schema.table identifier (e.g., "public.users" or just "users")

    Returns:
        Quoted identifier safe for use in SQL

    Raises:
        ValueError: If the identifier is invalid
    """
    validate_schema_table(schema_table)

    if "." in schema_table:
        schema, table = schema_table.split(".", 1)
        return f'"{schema}"."{table}"'
    return quote_identifier(schema_table)


def validate_integer_param(value: int, param_name: str, min_value: int = 0) -> None:
    """
    Validate an integer parameter (batch sizes, limits).

    Args:
        value: The value to validate
        param_name: Name of the parameter (for error messages)
        min_value: Minimum allowed value (default 0)

    Raises:
        ValueError: If the value is not a valid integer or below minimum
    """
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(
            f"Invalid {param_name}: {value!r}. Must be an integer."
        )

    if value < min_value:
        raise ValueError(
            f"Invalid {param_name}: {value}. Must be >= {min_value}."
        )


# Type names as printed by PostgreSQL's format_type(), e.g.
# 'character varying(255)', 'timestamp(3) with time zone', 'public."Role"', 'text[]'
VALID_TYPE_NAME = re.compile(r'^[a-zA-Z_"][a-zA-Z0-9_ ."(),\[\]]*$')


def validate_type_name(type_name: str) -> None:
    """
    Validate a catalog type name before it is interpolated into a CAST.

    Args:
        type_name: Type name as reported by the catalog

    Raises:
        ValueError: If the type name contains characters a type name cannot
    """
    if not type_name or not isinstance(type_name, str):
        raise ValueError("SQL type name cannot be empty")

    if not VALID_TYPE_NAME.match(type_name) or "--" in type_name:
        raise ValueError(f"Invalid SQL type name: {type_name!r}")

import logging
from typing import Tuple, Union

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError

from dashquery.core.errors import EncodingError, ForbiddenStatement, ValidationError
from dashquery.core.schemas import SafetyMode


# -----------------------------------------------------------------------------
# SAFETY VALIDATOR
# Purpose: stop destructive statements before they reach the shared connection.
# The default policy is a lexical denylist; the strict policy classifies
# parsed statements instead.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

GENERAL_DENYLIST: Tuple[str, ...] = ("drop", "delete")
READ_ONLY_DENYLIST: Tuple[str, ...] = GENERAL_DENYLIST + ("insert", "update")


def ensure_text(sql: Union[str, bytes]) -> str:
    """Decode a raw SQL payload, refusing anything that is not UTF-8."""
    if isinstance(sql, (bytes, bytearray)):
        try:
            return bytes(sql).decode("utf-8")
        except UnicodeDecodeError as error:
            raise EncodingError(f"SQL payload is not valid UTF-8: {error}") from error
    return sql


def _denylist_for(mode: SafetyMode) -> Tuple[str, ...]:
    if mode == SafetyMode.READ_ONLY:
        return READ_ONLY_DENYLIST
    return GENERAL_DENYLIST


def _check_keywords(sql: str, mode: SafetyMode) -> None:
    lowered = sql.lower()
    for keyword in _denylist_for(mode):
        if keyword in lowered:
            logger.warning(f"Rejected statement containing '{keyword}' ({mode.value})")
            if mode == SafetyMode.READ_ONLY:
                raise ForbiddenStatement("Only SELECT queries are allowed via streaming")
            raise ForbiddenStatement("Destructive operations are not allowed")


def _check_statement_kind(sql: str, mode: SafetyMode) -> None:
    try:
        parsed = sqlglot.parse(sql, read="duckdb")
        # Empty statements and a bare trailing comment are not statements
        statements = [
            s for s in parsed if s is not None and not isinstance(s, exp.Semicolon)
        ]
    except ParseError as error:
        raise ForbiddenStatement(f"Could not classify statement: {error}") from error

    if len(statements) != 1:
        raise ForbiddenStatement(
            f"Exactly one statement is allowed, got {len(statements)}"
        )

    statement = statements[0]
    if not isinstance(statement, exp.Query):
        kind = statement.key.upper()
        logger.warning(f"Rejected {kind} statement ({mode.value})")
        raise ForbiddenStatement(f"{kind} statements are not allowed")


def validate_sql(
    sql: str,
    mode: SafetyMode = SafetyMode.GENERAL,
    strict: bool = False,
) -> None:
    """
    Reject SQL text that may modify data.

    general mode refuses any text containing "drop" or "delete"; read_only
    mode also refuses "insert" and "update". Matching is a case-insensitive
    substring search, so an identifier such as ``deleted_at`` is refused too.

    With ``strict`` the text is parsed with sqlglot and must be a single
    query expression (SELECT, set operation or WITH ... SELECT) instead.

    Raises:
        ValidationError: empty SQL
        ForbiddenStatement: the statement is not allowed in this mode
    """
    if sql is None or not sql.strip():
        raise ValidationError("SQL query is empty")

    if strict:
        _check_statement_kind(sql, mode)
    else:
        _check_keywords(sql, mode)

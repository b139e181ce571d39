"""SQL query allowlist / denylist.

A query must pass both gates: it has to start with an allowed shape and it
must not contain a dangerous keyword.  The only query allowed to carry
``EXEC`` (and the ``ALTER`` inside it) is the index-rebuild stored-procedure
call used for SUSDB maintenance, matched in full.
"""

from __future__ import annotations

import re

from wsus_gateway.models.commands import ValidationResult
from wsus_gateway.utils.logging import get_logger

log = get_logger(__name__)

MAX_QUERY_LENGTH = 10_000

# ── Allowed leading shapes ────────────────────────────────────────────────
ALLOW_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^SELECT\s+", re.I),
    re.compile(r"^EXEC\s+sp_MSforeachtable\b", re.I),
]

# ── The one whitelisted stored-procedure call ─────────────────────────────
REINDEX_PROCEDURE = re.compile(
    r"^EXEC\s+sp_MSforeachtable\s+"
    r"'ALTER\s+INDEX\s+ALL\s+ON\s+\?\s+REBUILD"
    r"(\s+WITH\s*\(\s*FILLFACTOR\s*=\s*\d{1,3}\s*(,\s*ONLINE\s*=\s*(ON|OFF)\s*)?\))?"
    r"'\s*;?$",
    re.I,
)

REINDEX_QUERY = (
    "EXEC sp_MSforeachtable 'ALTER INDEX ALL ON ? REBUILD WITH (FILLFACTOR = 80, ONLINE = OFF)'"
)

# ── Keywords that are never allowed outside REINDEX_PROCEDURE ─────────────
DANGEROUS_KEYWORDS: tuple[str, ...] = (
    "DROP",
    "DELETE",
    "UPDATE",
    "INSERT",
    "ALTER",
    "CREATE",
    "TRUNCATE",
    "EXEC",
    "EXECUTE",
)

_KEYWORD_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (kw, re.compile(rf"\b{kw}\b")) for kw in DANGEROUS_KEYWORDS
]


def validate_query(query: str) -> ValidationResult:
    """Check a SQL query against the allowlist and the keyword denylist."""
    if query is None:
        raise TypeError("query must be a string, not None")

    trimmed = query.strip()

    if not any(pat.search(trimmed) for pat in ALLOW_PATTERNS):
        return _reject("Query not in whitelist of allowed queries")

    upper = trimmed.upper()
    is_reindex = REINDEX_PROCEDURE.match(trimmed) is not None
    for keyword, pat in _KEYWORD_PATTERNS:
        if pat.search(upper) and not is_reindex:
            if keyword in ("EXEC", "EXECUTE"):
                return _reject("EXEC/EXECUTE only allowed for whitelisted stored procedures")
            return _reject(f"Dangerous SQL keyword detected: {keyword}")

    if len(trimmed) > MAX_QUERY_LENGTH:
        return _reject("Query exceeds maximum length")

    return ValidationResult.ok()


def _reject(reason: str) -> ValidationResult:
    log.warning("query_filter.rejected", reason=reason)
    return ValidationResult.reject(reason)

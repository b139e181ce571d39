"""Helpers for building PowerShell script text."""

from __future__ import annotations

import base64
import re

_MODULE_NAME = re.compile(r"^[a-zA-Z0-9_-]+$")
_SINGLE_QUOTES = re.compile("['‘’‚‛]")


def escape_for_shell(secret: str) -> str:
    """Escape *secret* for interpolation inside a double-quoted PowerShell string.

    Order matters: backticks are doubled first so the escape backticks added
    for ``$`` and ``"`` are not escaped again.  Single quotes are doubled so
    the value also survives a single-quoted context.  Callers must not add
    their own quoting around the result beyond the surrounding ``"..."``.
    """
    return (
        secret.replace("`", "``")
        .replace("$", "`$")
        .replace('"', '`"')
        .replace("'", "''")
    )


def quote_literal(value: str) -> str:
    """Wrap *value* in a single-quoted PowerShell string.

    Nothing expands inside single quotes; the only special characters are
    the quote itself and its typographic variants, which PowerShell also
    treats as quotes.
    """
    return "'" + _SINGLE_QUOTES.sub(lambda m: m.group(0) * 2, str(value)) + "'"


def is_valid_module_name(name: str) -> bool:
    return bool(name) and _MODULE_NAME.match(name) is not None


def encode_command(script: str) -> str:
    """Base64 of the UTF-16LE script, as ``-EncodedCommand`` expects."""
    return base64.b64encode(script.encode("utf-16-le")).decode("ascii")


def sanitize_error(error: str, limit: int = 200) -> str:
    """Strip filesystem paths and stack lines from an error before logging it."""
    cleaned = re.sub(r"[A-Za-z]:\\\S+", "[PATH]", error)
    cleaned = re.sub(r"at\s+.*\n", "", cleaned)
    cleaned = re.sub(r"Line\s+\d+:", "[LINE]", cleaned)
    return cleaned[:limit]

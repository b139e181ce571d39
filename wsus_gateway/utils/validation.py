"""Input validation helpers."""

from __future__ import annotations

import re
from typing import Optional

MAX_COMMAND_LENGTH = 1000
MAX_HOSTNAME_LENGTH = 255
MAX_ID_LENGTH = 100
MAX_UPDATE_IDS = 100

_HOSTNAME = re.compile(r"^[a-zA-Z0-9.-]+$")
_UPDATE_ID = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")


def validate_hostname(hostname: Optional[str]) -> Optional[str]:
    """Return *hostname* if it is a safe target, else ``None``."""
    if not hostname or not isinstance(hostname, str):
        return None
    if len(hostname) > MAX_HOSTNAME_LENGTH:
        return None
    if not _HOSTNAME.match(hostname):
        return None
    return hostname


def validate_command_input(text: object, max_length: int = MAX_COMMAND_LENGTH) -> bool:
    if not isinstance(text, str):
        return False
    if len(text) > max_length:
        return False
    return bool(text.strip())


def validate_id(value: object) -> bool:
    if not isinstance(value, str):
        return False
    if len(value) > MAX_ID_LENGTH:
        return False
    return bool(value.strip())


def validate_update_id(value: object) -> bool:
    """A WSUS update id: a bare GUID, no braces."""
    return isinstance(value, str) and _UPDATE_ID.fullmatch(value) is not None

"""PowerShell command whitelist and sanitizer.

A command is accepted only if a whitelisted cmdlet appears in a genuine
invocation position (start of script, after a pipe, after ``;``, after an
assignment, after an opening delimiter) or the script matches one of the safe
variable-assignment templates.  Accepted scripts are then stripped of known
injection primitives before they reach the privileged channel.

Known limitation: cmdlet names inside string literals or after a ``#`` are
not excluded, and one whitelisted invocation admits the whole script.
"""

from __future__ import annotations

import re

from wsus_gateway.models.commands import ValidationResult
from wsus_gateway.utils.logging import get_logger

log = get_logger(__name__)

# ── Allowed cmdlets ───────────────────────────────────────────────────────
ALLOWED_COMMANDS: tuple[str, ...] = (
    # WSUS
    "Get-WsusServer",
    "Get-WsusComputer",
    "Get-WsusUpdate",
    "Get-WsusProduct",
    "Set-WsusProduct",
    "Get-WsusClassification",
    "Set-WsusClassification",
    "Approve-WsusUpdate",
    "Deny-WsusUpdate",
    "Set-WsusServerSynchronization",
    "Invoke-WsusServerSynchronization",
    "Invoke-WsusServerCleanup",
    # Services / processes (read or stop only)
    "Get-Service",
    "Stop-Service",
    "Get-Process",
    "Get-PSDrive",
    "Get-CimInstance",
    # Modules
    "Get-Module",
    "Import-Module",
    # SQL
    "Invoke-Sqlcmd",
    # Data shaping and output
    "ConvertTo-Json",
    "ConvertFrom-Json",
    "Select-Object",
    "Where-Object",
    "ForEach-Object",
    "Measure-Object",
    "Write-Output",
    "Write-Error",
    "Out-File",
    "Start-Sleep",
    # Filesystem (non-destructive)
    "Test-Path",
    "New-Item",
    "Get-ChildItem",
    "Get-Content",
    "Get-ItemProperty",
    # Task Scheduler
    "Register-ScheduledTask",
    "Unregister-ScheduledTask",
    "Get-ScheduledTask",
    "Set-ScheduledTask",
    "New-ScheduledTaskTrigger",
    "New-ScheduledTaskAction",
    "New-ScheduledTaskPrincipal",
    "New-ScheduledTaskSettingsSet",
    # STIG compliance reads
    "Get-WebConfigurationProperty",
    "Get-WebConfiguration",
    "Get-NetFirewallProfile",
    "auditpol",
    "secedit",
    "netsh",
    # Deployment
    "Install-WindowsFeature",
    "Get-WindowsFeature",
)

# ── Invocation contexts a cmdlet must follow ──────────────────────────────
INVOCATION_CONTEXTS: tuple[str, ...] = (
    r"^",                          # start of script
    r"\|\s*",                      # after pipe
    r";\s*",                       # after semicolon
    r"\n\s*",                      # after newline
    r"\$[a-zA-Z_]\w*\s*=\s*",      # after variable assignment
    r"\(\s*",                      # after opening paren
    r"\{\s*",                      # after opening brace
    r"\[\s*",                      # after opening bracket
)

# Compiled once: one pattern per (context, cmdlet) pair.  The trailing
# lookahead stops "Get-ServiceX" from matching "Get-Service".
_INVOCATION_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(ctx + re.escape(name) + r"(?![\w-])", re.I)
    for ctx in INVOCATION_CONTEXTS
    for name in ALLOWED_COMMANDS
)

# ── Safe variable-assignment templates ────────────────────────────────────
SAFE_ASSIGNMENT_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^\$wsusServer\s*=\s*Get-WsusServer\b", re.I),
    re.compile(r"^\$computers\s*=\s*Get-WsusComputer\b", re.I),
    re.compile(r"^\$updates\s*=\s*Get-WsusUpdate\b", re.I),
    re.compile(r"^\$(stats|result)\s*=\s*\[PSCustomObject\]", re.I),
    re.compile(r"^\$service\s*=\s*Get-Service\b", re.I),
    re.compile(r"^\$features?\s*=\s*Get-WindowsFeature\b", re.I),
    re.compile(r"^\$params?\s*=\s*@\{", re.I),
    re.compile(r"^\[PSCustomObject\]\s*@\{", re.I),
]

# ── Constructs stripped even from accepted commands ───────────────────────
_SANITIZE_RULES: list[tuple[re.Pattern[str], str]] = [
    # dynamic evaluation
    (re.compile(r"\bInvoke-Expression\b", re.I), ""),
    (re.compile(r"\biex\b", re.I), ""),
    # remote content loading
    (re.compile(r"\.DownloadString\s*\(", re.I), ""),
    (re.compile(r"\.DownloadFile\s*\(", re.I), ""),
    # hidden windows
    (re.compile(r"-WindowStyle\s+Hidden", re.I), ""),
    # encoded payloads
    (re.compile(r"\[System\.Convert\]::FromBase64String", re.I), ""),
    (re.compile(r"-EncodedCommand\b", re.I), ""),
    (re.compile(r"-enc\b", re.I), ""),
    # in-memory assembly loading
    (re.compile(r"\[System\.IO\.MemoryStream\]", re.I), ""),
    (re.compile(r"\[System\.Reflection\.Assembly\]::Load", re.I), ""),
    # `0 (null) and `a (bell) escapes; an escaped backtick (``) is literal
    (re.compile(r"(?<!`)((?:``)*)`[0a]"), r"\1"),
]

_WHITESPACE = re.compile(r"\s+")


# ── Public API ────────────────────────────────────────────────────────────

def normalize(command: str) -> str:
    """Collapse whitespace runs to single spaces and strip."""
    return _WHITESPACE.sub(" ", command).strip()


def is_allowed(command: str) -> bool:
    """Whether *command* invokes a whitelisted cmdlet in a safe context."""
    cmd = normalize(command)
    if not cmd:
        return False

    if any(pat.search(cmd) for pat in _INVOCATION_PATTERNS):
        return True

    return any(pat.search(cmd) for pat in SAFE_ASSIGNMENT_PATTERNS)


def check_command(command: str) -> ValidationResult:
    """Like :func:`is_allowed` but with a reason on rejection."""
    if not command or not command.strip():
        return ValidationResult.reject("empty command")
    if is_allowed(command):
        return ValidationResult.ok()
    return ValidationResult.reject("Command not whitelisted for security")


def sanitize(command: str) -> str:
    """Remove dangerous constructs from an already-accepted command.

    Pipes, semicolons, braces and ``$`` expansions are left alone because
    legitimate WSUS pipelines depend on them.
    """
    if not command:
        return ""
    sanitized = command
    for pat, repl in _SANITIZE_RULES:
        sanitized = pat.sub(repl, sanitized)
    if sanitized != command:
        log.warning("command_filter.sanitized", removed=len(command) - len(sanitized))
    return sanitized.strip()

"""SUSDB access through ``Invoke-Sqlcmd``.

Queries are checked against the query allowlist, wrapped in a PowerShell
script and run through the execution gateway.  The SA password, when one is
given, is escaped and turned into a ``PSCredential`` inside the script; it
never appears as a process argument.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

from wsus_gateway.config import Settings, settings
from wsus_gateway.errors import ExternalServiceError
from wsus_gateway.models.commands import QueryResult
from wsus_gateway.models.telemetry import DatabaseMetrics
from wsus_gateway.services.activity_log import ActivityLog
from wsus_gateway.services.gateway import ExecutionGateway
from wsus_gateway.services.query_filter import REINDEX_QUERY, validate_query
from wsus_gateway.utils.logging import get_logger
from wsus_gateway.utils.powershell import escape_for_shell, quote_literal, sanitize_error

log = get_logger(__name__)

DATABASE_SIZE_QUERY = """
SELECT
  DB_NAME() AS DatabaseName,
  CAST(SUM(size) * 8.0 / 1024 / 1024 AS DECIMAL(10,2)) AS SizeGB,
  CAST(SUM(size) * 8.0 / 1024 AS DECIMAL(10,2)) AS SizeMB
FROM sys.database_files
WHERE type = 0
""".strip()

LAST_BACKUP_QUERY = """
SELECT TOP 1 backup_finish_date
FROM msdb.dbo.backupset
WHERE database_name = {database}
ORDER BY backup_finish_date DESC
""".strip()


def build_query_script(
    query: str,
    server_instance: str,
    database: str,
    sa_password: str | None = None,
    query_timeout: int = 30,
) -> str:
    """PowerShell that runs *query* and prints the rows as compressed JSON."""
    lines = [
        "$ErrorActionPreference = 'Stop'",
        f"$serverInstance = {quote_literal(server_instance)}",
        f"$database = {quote_literal(database)}",
    ]
    if sa_password:
        lines += [
            f'$securePassword = ConvertTo-SecureString "{escape_for_shell(sa_password)}" -AsPlainText -Force',
            '$credential = New-Object System.Management.Automation.PSCredential("sa", $securePassword)',
        ]
    # Without a credential Invoke-Sqlcmd uses the Windows identity of the channel.
    auth = " -Credential $credential" if sa_password else ""
    lines += [
        "try {",
        "  Import-Module SqlServer -ErrorAction Stop",
        f"  $results = Invoke-Sqlcmd -ServerInstance $serverInstance -Database $database "
        f"-Query {quote_literal(query)} -QueryTimeout {query_timeout}{auth} -ErrorAction Stop",
        "  $results | Select-Object * -ExcludeProperty ItemArray, Table, RowError, RowState, HasErrors "
        "| ConvertTo-Json -Compress -Depth 3",
        "} catch {",
        '  Write-Error "SQL execution failed: $_"',
        "  exit 1",
        "}",
    ]
    return "\n".join(lines)


class SqlService:
    """Run allowlisted queries against the WSUS database."""

    def __init__(
        self,
        gateway: ExecutionGateway,
        cfg: Settings | None = None,
        activity: ActivityLog | None = None,
    ) -> None:
        self._gateway = gateway
        self._cfg = cfg or settings
        self._activity = activity or ActivityLog()

    @property
    def server_instance(self) -> str:
        return self._cfg.sql_server_instance

    @property
    def database(self) -> str:
        return self._cfg.wsus_database_name

    async def execute_query(
        self,
        query: str,
        sa_password: str | None = None,
        timeout: float | None = None,
    ) -> QueryResult:
        check = validate_query(query)
        if not check:
            self._activity.warn(f"SQL query rejected: {check.reason}")
            return QueryResult(success=False, error=check.reason, rejected=True)

        timeout = timeout or self._cfg.default_timeout_seconds
        script = build_query_script(
            query.strip(),
            self.server_instance,
            self.database,
            sa_password,
            query_timeout=max(1, int(timeout)),
        )
        result = await self._gateway.execute(script, timeout)
        if not result.success:
            error = sanitize_error(result.stderr or f"exit code {result.exit_code}")
            log.warning("sql.query_failed", exit_code=result.exit_code, error=error)
            self._activity.error(f"SQL query failed: {error}")
            return QueryResult(success=False, error=error)

        if not result.stdout:
            return QueryResult()
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            self._activity.warn(f"Failed to parse SQL result as JSON: {exc.msg}")
            return QueryResult(success=False, error="SQL result was not valid JSON")

        rows = data if isinstance(data, list) else [data]
        log.debug("sql.query_ok", rows=len(rows))
        return QueryResult(rows=[r for r in rows if isinstance(r, dict)])

    async def get_last_backup_date(self, sa_password: str | None = None) -> str:
        """Most recent full backup as ``YYYY-MM-DD HH:MM``, or ``"Never"``."""
        database = "'" + self.database.replace("'", "''") + "'"
        outcome = await self.execute_query(
            LAST_BACKUP_QUERY.format(database=database), sa_password,
        )
        if outcome.success and outcome.rows:
            value = outcome.rows[0].get("backup_finish_date")
            parsed = _parse_sql_datetime(value)
            if parsed is not None:
                return parsed.strftime("%Y-%m-%d %H:%M")
        elif not outcome.success:
            self._activity.warn(f"Could not retrieve backup date: {outcome.error}")
        return "Never"

    async def get_database_metrics(self, sa_password: str | None = None) -> Optional[DatabaseMetrics]:
        outcome = await self.execute_query(DATABASE_SIZE_QUERY, sa_password)
        if not outcome.success or not outcome.rows:
            return None

        try:
            size_gb = float(outcome.rows[0].get("SizeGB") or 0)
        except (TypeError, ValueError):
            size_gb = 0.0

        return DatabaseMetrics(
            current_size_gb=size_gb,
            instance_name=self.server_instance,
            last_backup=await self.get_last_backup_date(sa_password),
        )

    async def reindex_database(self, sa_password: str | None = None) -> None:
        """Rebuild every SUSDB index.  Raises :class:`ExternalServiceError` on failure."""
        outcome = await self.execute_query(
            REINDEX_QUERY,
            sa_password,
            timeout=self._cfg.maintenance_timeout_seconds,
        )
        if not outcome.success:
            raise ExternalServiceError(outcome.error or "reindex failed", service="sql")
        self._activity.info("Database reindexing completed")


def _parse_sql_datetime(value: Any) -> Optional[datetime]:
    """Parse the forms ``ConvertTo-Json`` emits for a ``DateTime`` column."""
    if not value:
        return None
    if isinstance(value, dict):
        value = value.get("value") or value.get("DateTime")
        if not value:
            return None
    text = str(value)
    if text.startswith("/Date(") and text.endswith(")/"):
        millis = text[6:-2].split("+")[0].split("-")[0]
        try:
            return datetime.fromtimestamp(int(millis) / 1000, tz=timezone.utc)
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None

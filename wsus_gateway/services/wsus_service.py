"""WSUS server queries and maintenance through the UpdateServices module."""

from __future__ import annotations

from typing import Any, Optional

from wsus_gateway.config import Settings, settings
from wsus_gateway.errors import CommandValidationError, ExecutionFailure
from wsus_gateway.models.commands import ExecutionResult
from wsus_gateway.models.telemetry import (
    EnvironmentStats,
    HealthStatus,
    ServiceState,
    WsusComputer,
    WsusHealth,
)
from wsus_gateway.models.updates import (
    ApprovalResult,
    DeclineResult,
    PendingUpdate,
    SyncResult,
    SyncStatus,
)
from wsus_gateway.services.activity_log import ActivityLog
from wsus_gateway.services.gateway import ExecutionGateway
from wsus_gateway.utils.logging import get_logger
from wsus_gateway.utils.powershell import is_valid_module_name, quote_literal
from wsus_gateway.utils.validation import MAX_UPDATE_IDS, validate_update_id

log = get_logger(__name__)

WSUS_MODULE = "UpdateServices"
CLEANUP_MARKER = "SUCCESS"
PENDING_UPDATES_LIMIT = 100
MAX_GROUP_NAME_LENGTH = 256

# (display name, Windows service name, type)
MONITORED_SERVICES: tuple[tuple[str, str, str], ...] = (
    ("WSUS Service", "WsusService", "WSUS"),
    ("SQL Server (Express)", "MSSQL$SQLEXPRESS", "SQL"),
    ("IIS (W3SVC)", "W3SVC", "IIS"),
)

STATS_SCRIPT = """
$wsus = {connection}
$computers = Get-WsusComputer -UpdateServer $wsus
$total = $computers.Count
$healthy = ($computers | Where-Object {{ $_.LastSyncTime -gt (Get-Date).AddDays(-7) }}).Count
$warning = ($computers | Where-Object {{ $_.LastSyncTime -lt (Get-Date).AddDays(-7) -and $_.LastSyncTime -gt (Get-Date).AddDays(-30) }}).Count
$critical = ($computers | Where-Object {{ $_.LastSyncTime -lt (Get-Date).AddDays(-30) -or $_.LastSyncTime -eq $null }}).Count
$updates = (Get-WsusUpdate -UpdateServer $wsus).Count
$securityUpdates = (Get-WsusUpdate -UpdateServer $wsus -Classification Security).Count
$wsusService = Get-Service -Name WsusService -ErrorAction SilentlyContinue
$sqlService = Get-Service -Name 'MSSQL$SQLEXPRESS' -ErrorAction SilentlyContinue
$iisService = Get-Service -Name W3SVC -ErrorAction SilentlyContinue
$disk = Get-PSDrive C
[PSCustomObject]@{{
  TotalComputers = $total
  HealthyComputers = $healthy
  WarningComputers = $warning
  CriticalComputers = $critical
  TotalUpdates = $updates
  SecurityUpdatesCount = $securityUpdates
  WsusServiceStatus = if ($wsusService) {{ $wsusService.Status.ToString() }} else {{ 'Unknown' }}
  SqlServiceStatus = if ($sqlService) {{ $sqlService.Status.ToString() }} else {{ 'Unknown' }}
  IISServiceStatus = if ($iisService) {{ $iisService.Status.ToString() }} else {{ 'Unknown' }}
  DiskFreeGB = [math]::Round($disk.Free / 1GB, 2)
}} | ConvertTo-Json -Compress
""".strip()

COMPUTERS_SCRIPT = """
$wsus = {connection}
$computers = Get-WsusComputer -UpdateServer $wsus
@($computers | ForEach-Object {{
  [PSCustomObject]@{{
    Name = $_.FullDomainName
    IPAddress = $_.IPAddress.ToString()
    OS = $_.OSDescription
    Status = if ($_.LastSyncTime -gt (Get-Date).AddDays(-7)) {{ 'Healthy' }} elseif ($_.LastSyncTime -gt (Get-Date).AddDays(-30)) {{ 'Warning' }} else {{ 'Critical' }}
    LastSync = if ($_.LastSyncTime) {{ $_.LastSyncTime.ToString('yyyy-MM-dd HH:mm') }} else {{ 'Never' }}
    UpdatesNeeded = $_.GetUpdateInstallationSummary().NotInstalledCount
    UpdatesInstalled = $_.GetUpdateInstallationSummary().InstalledCount
    TargetGroup = ($_.GetComputerTargetGroups() | Select-Object -First 1).Name
  }}
}}) | ConvertTo-Json -Compress
""".strip()

CLEANUP_SCRIPT = """
$wsus = {connection}
Invoke-WsusServerCleanup -UpdateServer $wsus -CleanupObsoleteUpdates -CleanupUnneededContentFiles -CleanupObsoleteComputers -CompressUpdates -DeclineExpiredUpdates
Write-Output "{marker}"
""".strip()

SYNC_SCRIPT = """
try {{
  $wsus = {connection} -ErrorAction Stop
  $subscription = $wsus.GetSubscription()
  if ($subscription.GetSynchronizationStatus() -eq 'Running') {{
    [PSCustomObject]@{{ Success = $true; Message = 'Sync already in progress' }} | ConvertTo-Json -Compress
  }} else {{
    $subscription.StartSynchronization()
    [PSCustomObject]@{{ Success = $true; Message = 'Synchronization started' }} | ConvertTo-Json -Compress
  }}
}} catch {{
  [PSCustomObject]@{{ Success = $false; Message = $_.Exception.Message }} | ConvertTo-Json -Compress
}}
""".strip()

SYNC_STATUS_SCRIPT = """
$wsus = {connection}
$subscription = $wsus.GetSubscription()
$lastSync = $subscription.LastSynchronizationTime
$nextSync = $subscription.NextSynchronizationTime
[PSCustomObject]@{{
  Status = $subscription.GetSynchronizationStatus().ToString()
  LastSyncTime = if ($lastSync -and $lastSync -gt [DateTime]::MinValue) {{ $lastSync.ToString('yyyy-MM-dd HH:mm:ss') }} else {{ 'Never' }}
  LastSyncResult = $subscription.LastSynchronizationResult.ToString()
  NextSyncTime = if ($nextSync -and $nextSync -gt (Get-Date)) {{ $nextSync.ToString('yyyy-MM-dd HH:mm:ss') }} else {{ 'Not scheduled' }}
}} | ConvertTo-Json -Compress
""".strip()

PENDING_UPDATES_SCRIPT = """
$wsus = {connection}
@(Get-WsusUpdate -UpdateServer $wsus | Where-Object {{
  $_.Update.IsDeclined -eq $false -and $_.Update.IsApproved -eq $false -and $_.Update.IsSuperseded -eq $false
}} | Select-Object -First {limit} | ForEach-Object {{
  [PSCustomObject]@{{
    Id = $_.Update.Id.UpdateId.ToString()
    Title = $_.Update.Title
    Classification = $_.Update.UpdateClassificationTitle
    Severity = if ($_.Update.MsrcSeverity) {{ $_.Update.MsrcSeverity }} else {{ 'Unknown' }}
    ReleaseDate = $_.Update.CreationDate.ToString('yyyy-MM-dd')
  }}
}}) | ConvertTo-Json -Compress
""".strip()

APPROVE_SCRIPT = """
$wsus = {connection}
$group = {group}
if (-not ($wsus.GetComputerTargetGroups() | Where-Object {{ $_.Name -eq $group }})) {{
  Write-Error "Target group not found: $group"
  exit 1
}}
$approved = 0
$failed = 0
foreach ($updateId in @({update_ids})) {{
  try {{
    $null = Get-WsusUpdate -UpdateServer $wsus -UpdateId $updateId -ErrorAction Stop | Approve-WsusUpdate -Action Install -TargetGroupName $group -ErrorAction Stop
    $approved++
  }} catch {{
    $failed++
  }}
}}
[PSCustomObject]@{{ Approved = $approved; Failed = $failed }} | ConvertTo-Json -Compress
""".strip()

DECLINE_SCRIPT = """
$wsus = {connection}
$declined = 0
$failed = 0
foreach ($updateId in @({update_ids})) {{
  try {{
    $null = Get-WsusUpdate -UpdateServer $wsus -UpdateId $updateId -ErrorAction Stop | Deny-WsusUpdate -ErrorAction Stop
    $declined++
  }} catch {{
    $failed++
  }}
}}
[PSCustomObject]@{{ Declined = $declined; Failed = $failed }} | ConvertTo-Json -Compress
""".strip()

DECLINE_SUPERSEDED_SCRIPT = """
$wsus = {connection}
$declined = 0
$failed = 0
Get-WsusUpdate -UpdateServer $wsus | Where-Object {{
  $_.Update.IsSuperseded -eq $true -and $_.Update.IsDeclined -eq $false
}} | ForEach-Object {{
  try {{
    $null = $_ | Deny-WsusUpdate -ErrorAction Stop
    $declined++
  }} catch {{
    $failed++
  }}
}}
[PSCustomObject]@{{ Declined = $declined; Failed = $failed }} | ConvertTo-Json -Compress
""".strip()

HEALTH_SCRIPT = """
$reachable = $false
try {{
  $wsus = {connection} -ErrorAction Stop
  $reachable = $true
}} catch {{ }}
$services = @(Get-Service -Name WsusService, 'MSSQL$SQLEXPRESS', W3SVC -ErrorAction SilentlyContinue | ForEach-Object {{
  [PSCustomObject]@{{ Name = $_.Name; Status = $_.Status.ToString() }}
}})
[PSCustomObject]@{{ Reachable = $reachable; Services = $services }} | ConvertTo-Json -Compress -Depth 3
""".strip()


def map_service_status(status: Optional[str]) -> str:
    value = (status or "").strip().lower()
    if value == "running":
        return "Running"
    if value == "stopped":
        return "Stopped"
    if value.endswith("pending"):
        return "Pending"
    return "Unknown"


def _as_list(data: Any) -> list[dict]:
    if data is None:
        return []
    items = data if isinstance(data, list) else [data]
    return [item for item in items if isinstance(item, dict)]


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _check_update_ids(update_ids: list[str]) -> list[str]:
    """Deduplicated *update_ids*, or :class:`CommandValidationError`."""
    if not update_ids:
        raise CommandValidationError("At least one update id is required", field="update_ids")
    unique = list(dict.fromkeys(update_ids))
    if len(unique) > MAX_UPDATE_IDS:
        raise CommandValidationError(
            f"At most {MAX_UPDATE_IDS} updates per request", field="update_ids",
        )
    for update_id in unique:
        if not validate_update_id(update_id):
            raise CommandValidationError(f"Invalid update id: {update_id!r}", field="update_ids")
    return unique


def _id_list(update_ids: list[str]) -> str:
    return ", ".join(quote_literal(update_id) for update_id in update_ids)


class WsusService:
    """Talks to the WSUS server through the execution gateway."""

    def __init__(
        self,
        gateway: ExecutionGateway,
        cfg: Settings | None = None,
        activity: ActivityLog | None = None,
    ) -> None:
        self._gateway = gateway
        self._cfg = cfg or settings
        self._activity = activity or ActivityLog()

    # ── scripts ───────────────────────────────────────────────────────

    def connection_script(self) -> str:
        server = self._cfg.wsus_server
        port = self._cfg.wsus_port
        if server == "localhost":
            return f"Get-WsusServer -Name localhost -PortNumber {port}"
        use_ssl = "$true" if self._cfg.wsus_use_ssl else "$false"
        return f"Get-WsusServer -Name {quote_literal(server)} -PortNumber {port} -UseSsl:{use_ssl}"

    # ── modules ───────────────────────────────────────────────────────

    async def check_module(self, name: str) -> bool:
        if not is_valid_module_name(name):
            return False
        result = await self._gateway.execute(
            f"Get-Module -ListAvailable -Name '{name}' | Select-Object -First 1",
            self._cfg.health_timeout_seconds,
        )
        return result.success and bool(result.stdout)

    async def import_module(self, name: str) -> ExecutionResult:
        if not is_valid_module_name(name):
            return ExecutionResult.failure("Invalid module name")
        return await self._gateway.execute(
            f"Import-Module '{name}' -ErrorAction SilentlyContinue",
            self._cfg.health_timeout_seconds,
        )

    async def initialize(self) -> bool:
        """Check and import the UpdateServices module.

        Returns False, with guidance in the activity log, when the WSUS role
        tools are not installed on the channel host.
        """
        if not await self.check_module(WSUS_MODULE):
            self._activity.warn(f"WSUS PowerShell module ({WSUS_MODULE}) not found.")
            self._activity.warn(
                "To install: Install-WindowsFeature -Name UpdateServices -IncludeManagementTools",
            )
            return False

        imported = await self.import_module(WSUS_MODULE)
        if not imported.success:
            self._activity.warn(f"Failed to import {WSUS_MODULE} module.")
            return False

        self._activity.info(
            f"WSUS Service initialized: {self._cfg.wsus_server}:{self._cfg.wsus_port} "
            f"(SSL: {self._cfg.wsus_use_ssl})",
        )
        return True

    # ── queries ───────────────────────────────────────────────────────

    async def get_stats(self) -> Optional[EnvironmentStats]:
        script = STATS_SCRIPT.format(connection=self.connection_script())
        try:
            data = await self._gateway.execute_json(script)
        except ExecutionFailure as exc:
            log.warning("wsus.stats_failed", error=exc.message)
            return None
        items = _as_list(data)
        if not items:
            return None
        raw = items[0]

        services = [
            ServiceState(
                name=display,
                status=map_service_status(raw.get(f"{key}ServiceStatus")),
                type=kind,
            )
            for display, key, kind in (
                ("WSUS Service", "Wsus", "WSUS"),
                ("SQL Server (Express)", "Sql", "SQL"),
                ("IIS (W3SVC)", "IIS", "IIS"),
            )
        ]
        try:
            disk_free = float(raw.get("DiskFreeGB") or 0)
        except (TypeError, ValueError):
            disk_free = 0.0

        return EnvironmentStats(
            total_computers=_as_int(raw.get("TotalComputers")),
            healthy_computers=_as_int(raw.get("HealthyComputers")),
            warning_computers=_as_int(raw.get("WarningComputers")),
            critical_computers=_as_int(raw.get("CriticalComputers")),
            total_updates=_as_int(raw.get("TotalUpdates")),
            security_updates_count=_as_int(raw.get("SecurityUpdatesCount")),
            services=services,
            is_installed=True,
            disk_free_gb=disk_free,
            automation_status="Ready",
        )

    async def get_computers(self) -> list[WsusComputer]:
        script = COMPUTERS_SCRIPT.format(connection=self.connection_script())
        try:
            data = await self._gateway.execute_json(script)
        except ExecutionFailure as exc:
            self._activity.warn("Failed to retrieve WSUS computers. Returning empty list.")
            log.warning("wsus.computers_failed", error=exc.message)
            return []

        return [
            WsusComputer(
                id=str(index),
                name=item.get("Name") or "Unknown",
                ip_address=item.get("IPAddress") or "0.0.0.0",
                os=item.get("OS") or "Unknown OS",
                status=HealthStatus.parse(item.get("Status")),
                last_sync=item.get("LastSync") or "Never",
                updates_needed=_as_int(item.get("UpdatesNeeded")),
                updates_installed=_as_int(item.get("UpdatesInstalled")),
                target_group=item.get("TargetGroup") or "Unassigned Computers",
            )
            for index, item in enumerate(_as_list(data), start=1)
        ]

    async def health_check(self) -> WsusHealth:
        script = HEALTH_SCRIPT.format(connection=self.connection_script())
        try:
            data = await self._gateway.execute_json(script, self._cfg.health_timeout_seconds)
        except ExecutionFailure as exc:
            return WsusHealth(issues=[f"Health check failed: {exc.message}"])

        raw = _as_list(data)[0] if _as_list(data) else {}
        found = {item.get("Name"): item.get("Status") for item in _as_list(raw.get("Services"))}

        services: list[ServiceState] = []
        issues: list[str] = []
        for display, name, kind in MONITORED_SERVICES:
            status = map_service_status(found.get(name))
            services.append(ServiceState(name=display, status=status, type=kind))
            if name not in found:
                issues.append(f"{display} not found")
            elif status != "Running":
                issues.append(f"{display} is not running")

        reachable = bool(raw.get("Reachable"))
        if not reachable:
            issues.append("Cannot connect to WSUS server")

        return WsusHealth(
            healthy=reachable and not issues,
            services=services,
            wsus_reachable=reachable,
            issues=issues,
        )

    # ── maintenance ───────────────────────────────────────────────────

    async def perform_cleanup(self) -> bool:
        script = CLEANUP_SCRIPT.format(
            connection=self.connection_script(),
            marker=CLEANUP_MARKER,
        )
        result = await self._gateway.execute(script, self._cfg.maintenance_timeout_seconds)
        return result.success and CLEANUP_MARKER in result.stdout

    async def decline_superseded_updates(self) -> Optional[DeclineResult]:
        """Decline every superseded update.  ``None`` when the run failed."""
        script = DECLINE_SUPERSEDED_SCRIPT.format(connection=self.connection_script())
        try:
            data = await self._gateway.execute_json(script, self._cfg.maintenance_timeout_seconds)
        except ExecutionFailure as exc:
            log.warning("wsus.decline_superseded_failed", error=exc.message)
            return None
        raw = _as_list(data)[0] if _as_list(data) else {}
        return DeclineResult(declined=_as_int(raw.get("Declined")), failed=_as_int(raw.get("Failed")))

    # ── synchronization ───────────────────────────────────────────────

    async def sync_now(self) -> SyncResult:
        """Start a synchronization with the upstream server unless one is running."""
        script = SYNC_SCRIPT.format(connection=self.connection_script())
        self._activity.info("Triggering WSUS synchronization...")
        try:
            data = await self._gateway.execute_json(script, self._cfg.default_timeout_seconds)
        except ExecutionFailure as exc:
            log.warning("wsus.sync_failed", error=exc.message)
            self._activity.error(f"Error starting sync: {exc.message}")
            return SyncResult(success=False, message="Failed to start synchronization")

        raw = _as_list(data)[0] if _as_list(data) else {}
        result = SyncResult(success=bool(raw.get("Success")), message=raw.get("Message") or "")
        if result.success:
            log.info("wsus.sync_started", message=result.message)
            self._activity.info(f"WSUS synchronization: {result.message}")
        else:
            self._activity.error(f"Error starting sync: {result.message}")
        return result

    async def get_sync_status(self) -> SyncStatus:
        script = SYNC_STATUS_SCRIPT.format(connection=self.connection_script())
        try:
            data = await self._gateway.execute_json(script, self._cfg.health_timeout_seconds)
        except ExecutionFailure as exc:
            log.warning("wsus.sync_status_failed", error=exc.message)
            return SyncStatus(status="Error", last_sync_result=exc.message)

        raw = _as_list(data)[0] if _as_list(data) else {}
        return SyncStatus(
            status=raw.get("Status") or "Unknown",
            last_sync_time=raw.get("LastSyncTime") or "Never",
            last_sync_result=raw.get("LastSyncResult") or "Unknown",
            next_sync_time=raw.get("NextSyncTime") or "Not scheduled",
        )

    # ── update approval ───────────────────────────────────────────────

    async def get_pending_updates(self) -> list[PendingUpdate]:
        """Updates that are neither approved, declined nor superseded."""
        script = PENDING_UPDATES_SCRIPT.format(
            connection=self.connection_script(),
            limit=PENDING_UPDATES_LIMIT,
        )
        try:
            data = await self._gateway.execute_json(script, self._cfg.maintenance_timeout_seconds)
        except ExecutionFailure as exc:
            log.warning("wsus.pending_updates_failed", error=exc.message)
            return []

        return [
            PendingUpdate(
                id=str(item["Id"]),
                title=item.get("Title") or "",
                classification=item.get("Classification") or "",
                severity=item.get("Severity") or "Unknown",
                release_date=item.get("ReleaseDate") or "",
            )
            for item in _as_list(data)
            if item.get("Id")
        ]

    async def approve_updates(
        self,
        update_ids: list[str],
        target_group: str = "All Computers",
    ) -> ApprovalResult:
        """Approve *update_ids* for installation on *target_group*.

        Raises :class:`CommandValidationError` for an empty or oversized id
        list, a malformed id or a blank group name.
        """
        ids = _check_update_ids(update_ids)
        group = (target_group or "").strip()
        if not group or len(group) > MAX_GROUP_NAME_LENGTH:
            raise CommandValidationError("Target group name is required", field="target_group")

        script = APPROVE_SCRIPT.format(
            connection=self.connection_script(),
            group=quote_literal(group),
            update_ids=_id_list(ids),
        )
        try:
            data = await self._gateway.execute_json(script, self._cfg.maintenance_timeout_seconds)
        except ExecutionFailure as exc:
            log.warning("wsus.approve_failed", group=group, count=len(ids), error=exc.message)
            self._activity.error(f"Error approving updates: {exc.message}")
            return ApprovalResult(approved=0, failed=len(ids))

        raw = _as_list(data)[0] if _as_list(data) else {}
        if not raw:
            return ApprovalResult(approved=0, failed=len(ids))
        result = ApprovalResult(approved=_as_int(raw.get("Approved")), failed=_as_int(raw.get("Failed")))
        log.info("wsus.updates_approved", group=group, approved=result.approved, failed=result.failed)
        self._activity.info(f"Approved {result.approved} update(s) for '{group}', {result.failed} failed.")
        return result

    async def decline_updates(self, update_ids: list[str]) -> DeclineResult:
        ids = _check_update_ids(update_ids)
        script = DECLINE_SCRIPT.format(connection=self.connection_script(), update_ids=_id_list(ids))
        try:
            data = await self._gateway.execute_json(script, self._cfg.maintenance_timeout_seconds)
        except ExecutionFailure as exc:
            log.warning("wsus.decline_failed", count=len(ids), error=exc.message)
            self._activity.error(f"Error declining updates: {exc.message}")
            return DeclineResult(declined=0, failed=len(ids))

        raw = _as_list(data)[0] if _as_list(data) else {}
        if not raw:
            return DeclineResult(declined=0, failed=len(ids))
        result = DeclineResult(declined=_as_int(raw.get("Declined")), failed=_as_int(raw.get("Failed")))
        log.info("wsus.updates_declined", declined=result.declined, failed=result.failed)
        self._activity.info(f"Declined {result.declined} update(s), {result.failed} failed.")
        return result

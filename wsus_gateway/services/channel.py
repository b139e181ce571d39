"""Privileged execution channels.

``LocalPowerShellChannel`` runs ``powershell.exe`` on this host.
``RemotePowerShellChannel`` keeps one SSH session to the WSUS server open
(connection reuse, idle timeout, concurrency lock) using scrapli's
``GenericDriver`` on the paramiko transport, run inside a single-thread
executor so the event loop is never blocked.  The remote OpenSSH default
shell must be PowerShell.

Channels do not enforce timeouts by themselves beyond what the transport
offers; the gateway wraps every call in ``asyncio.wait_for``.  A cancelled
local call kills the child process; a cancelled remote call stops waiting
but the command may still finish on the server.  scrapli connection and
transport errors drop the session and surface as ``ChannelUnavailable``.
"""

from __future__ import annotations

import asyncio
import re
import shutil
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Protocol

from scrapli.driver import GenericDriver
from scrapli.exceptions import ScrapliException, ScrapliTimeout
from scrapli.response import Response

from wsus_gateway.config import Settings, settings
from wsus_gateway.errors import ChannelUnavailable
from wsus_gateway.models.commands import ChannelOutput
from wsus_gateway.utils.logging import get_logger
from wsus_gateway.utils.powershell import encode_command

log = get_logger(__name__)

EXIT_SENTINEL = "__WSUSGW_EXIT__"
_EXIT_LINE = re.compile(rf"^{EXIT_SENTINEL}:(-?\d*)\s*$", re.M)
POWERSHELL_PROMPT = r"^PS [^\r\n]*>\s?$"


class PrivilegedChannel(Protocol):
    async def invoke(self, command: str, timeout: float) -> ChannelOutput: ...

    async def close(self) -> None: ...

    @property
    def is_available(self) -> bool: ...


# ── local powershell.exe ──────────────────────────────────────────────────

class LocalPowerShellChannel:
    """Run each command in a fresh ``powershell.exe`` process."""

    def __init__(self, cfg: Settings | None = None) -> None:
        self._cfg = cfg or settings
        self._executable = shutil.which(self._cfg.powershell_executable)

    @property
    def is_available(self) -> bool:
        return self._executable is not None

    async def invoke(self, command: str, timeout: float) -> ChannelOutput:
        if self._executable is None:
            raise ChannelUnavailable(
                f"{self._cfg.powershell_executable} not found on this host",
            )

        started = time.monotonic()
        proc = await asyncio.create_subprocess_exec(
            self._executable,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy", "Bypass",
            "-Command", command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                log.warning("channel.local_killed", pid=proc.pid)
            raise

        return ChannelOutput(
            stdout=stdout.decode(errors="replace").strip(),
            stderr=stderr.decode(errors="replace").strip(),
            exit_code=proc.returncode if proc.returncode is not None else 1,
            elapsed_time=time.monotonic() - started,
        )

    async def close(self) -> None:
        return None


# ── remote WSUS host over SSH ─────────────────────────────────────────────

class RemotePowerShellChannel:
    """One reusable SSH session to the WSUS server."""

    def __init__(self, cfg: Settings | None = None) -> None:
        self._cfg = cfg or settings
        self._driver: Optional[GenericDriver] = None
        self._lock = asyncio.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ssh")
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._last_used: float = 0.0

    # ── connection lifecycle ──────────────────────────────────────────

    def _build_driver(self) -> GenericDriver:
        auth_kwargs: dict = dict(
            host=self._cfg.wsus_ssh_host,
            port=self._cfg.wsus_ssh_port,
            auth_username=self._cfg.wsus_ssh_username,
            auth_password=self._cfg.wsus_ssh_password,
            auth_strict_key=False,
            transport="paramiko",
            comms_prompt_pattern=POWERSHELL_PROMPT,
            timeout_socket=15,
            timeout_transport=15,
            timeout_ops=self._cfg.default_timeout_seconds,
        )
        if self._cfg.wsus_ssh_key_path:
            auth_kwargs["auth_private_key"] = self._cfg.wsus_ssh_key_path
        return GenericDriver(**auth_kwargs)

    def _open_sync(self) -> GenericDriver:
        log.info("ssh.connecting", host=self._cfg.wsus_ssh_host)
        driver = self._build_driver()
        driver.open()
        # Owned by the channel from here on, even if the caller was cancelled.
        self._driver = driver
        driver.send_command("$ProgressPreference = 'SilentlyContinue'")
        log.info("ssh.connected")
        return driver

    def _close_sync(self) -> None:
        if self._driver is not None:
            try:
                self._driver.close()
            except Exception as exc:
                log.warning("ssh.close_failed", error=str(exc))
            self._driver = None
            log.info("ssh.closed")

    async def _ensure(self) -> GenericDriver:
        if self._driver is not None and self.is_connected:
            return self._driver
        if self._driver is not None:
            await self._run(_close_sync_wrapper, self)
        return await self._run(RemotePowerShellChannel._open_sync, self)

    # ── idle timeout ──────────────────────────────────────────────────

    def _reset_idle(self) -> None:
        self._last_used = time.monotonic()
        if self._idle_handle is not None:
            self._idle_handle.cancel()
        loop = asyncio.get_running_loop()
        self._idle_handle = loop.call_later(
            self._cfg.wsus_session_idle_timeout_seconds,
            lambda: asyncio.ensure_future(self._idle_close()),
        )

    async def _idle_close(self) -> None:
        async with self._lock:
            elapsed = time.monotonic() - self._last_used
            if elapsed >= self._cfg.wsus_session_idle_timeout_seconds:
                log.info("ssh.idle_timeout", elapsed=elapsed)
                await self._run(_close_sync_wrapper, self)

    # ── helpers ───────────────────────────────────────────────────────

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    # ── public ────────────────────────────────────────────────────────

    @property
    def is_available(self) -> bool:
        return bool(self._cfg.wsus_ssh_host)

    async def invoke(self, command: str, timeout: float) -> ChannelOutput:
        if not self.is_available:
            raise ChannelUnavailable("WSUS_SSH_HOST is not configured")

        async with self._lock:
            try:
                driver = await self._ensure()
            except ScrapliException as exc:
                await self._run(_close_sync_wrapper, self)
                log.error("ssh.connect_failed", host=self._cfg.wsus_ssh_host, error=str(exc))
                raise ChannelUnavailable(
                    f"cannot open SSH session to {self._cfg.wsus_ssh_host}: {exc}",
                ) from exc
            self._reset_idle()
            started = time.monotonic()
            try:
                resp: Response = await self._run(
                    _send_command_wrapper, driver, wrap_remote_command(command), timeout,
                )
            except ScrapliTimeout as exc:
                # The session is mid-command and unusable; drop it.
                await self._run(_close_sync_wrapper, self)
                raise TimeoutError(f"remote command timeout after {timeout}s") from exc
            except ScrapliException as exc:
                await self._run(_close_sync_wrapper, self)
                log.error("ssh.session_failed", error=str(exc))
                raise ChannelUnavailable(f"SSH session failed: {exc}") from exc
            return parse_remote_output(resp.result, resp.failed, time.monotonic() - started)

    async def close(self) -> None:
        async with self._lock:
            if self._idle_handle is not None:
                self._idle_handle.cancel()
            await self._run(_close_sync_wrapper, self)

    @property
    def is_connected(self) -> bool:
        if self._driver is None:
            return False
        try:
            return self._driver.isalive()
        except Exception:
            return False


class DisabledChannel:
    """Channel used when privileged execution is switched off."""

    @property
    def is_available(self) -> bool:
        return False

    async def invoke(self, command: str, timeout: float) -> ChannelOutput:
        raise ChannelUnavailable("privileged execution is disabled")

    async def close(self) -> None:
        return None


def build_channel(cfg: Settings | None = None) -> PrivilegedChannel:
    _cfg = cfg or settings
    if _cfg.wsus_channel == "ssh":
        return RemotePowerShellChannel(_cfg)
    if _cfg.wsus_channel == "disabled":
        return DisabledChannel()
    return LocalPowerShellChannel(_cfg)


# ── remote command framing ────────────────────────────────────────────────

def wrap_remote_command(command: str) -> str:
    """One channel line that runs *command* and echoes its exit code."""
    return (
        "powershell -NoProfile -NonInteractive -EncodedCommand "
        f'{encode_command(command)}; "{EXIT_SENTINEL}:$LASTEXITCODE"'
    )


def parse_remote_output(output: str, failed: bool, elapsed: float = 0.0) -> ChannelOutput:
    """Split the sentinel line off *output* and turn it into an exit code."""
    matches = list(_EXIT_LINE.finditer(output))
    if matches:
        last = matches[-1]
        code_text = last.group(1)
        exit_code = int(code_text) if code_text else (1 if failed else 0)
        body = (output[: last.start()] + output[last.end():]).strip()
    else:
        exit_code = 1
        body = output.strip()

    if exit_code == 0 and not failed:
        return ChannelOutput(stdout=body, exit_code=0, elapsed_time=elapsed)
    return ChannelOutput(
        stdout=body,
        stderr=body,
        exit_code=exit_code or 1,
        elapsed_time=elapsed,
    )


# ── module-level sync wrappers (executor-friendly) ────────────────────────

def _close_sync_wrapper(channel: RemotePowerShellChannel) -> None:
    channel._close_sync()


def _send_command_wrapper(driver: GenericDriver, command: str, timeout: float) -> Response:
    return driver.send_command(
        command,
        failed_when_contains=["FullyQualifiedErrorId", "CategoryInfo"],
        timeout_ops=timeout,
    )

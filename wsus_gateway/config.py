"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is driven by environment variables."""

    # WSUS connection
    wsus_server: str = "localhost"
    wsus_port: int = 8530
    wsus_use_ssl: bool = False

    # SQL Server hosting SUSDB
    sql_server_instance: str = "localhost\\SQLEXPRESS"
    wsus_database_name: str = "SUSDB"

    # Privileged channel: "local" runs powershell.exe, "ssh" drives a remote
    # WSUS host over OpenSSH, "disabled" rejects every execution.
    wsus_channel: Literal["local", "ssh", "disabled"] = "local"
    powershell_executable: str = "powershell.exe"

    # Remote channel (ssh)
    wsus_ssh_host: str = ""
    wsus_ssh_port: int = 22
    wsus_ssh_username: str = "Administrator"
    wsus_ssh_password: str = ""
    wsus_ssh_key_path: str = ""
    wsus_session_idle_timeout_seconds: int = 30

    # API key
    wsus_api_key: str = ""

    # Air-gap mode: a failed refresh keeps the cached snapshot regardless of age
    wsus_air_gap: bool = True

    # Timeouts (seconds)
    default_timeout_seconds: float = 30.0
    health_timeout_seconds: float = 15.0
    maintenance_timeout_seconds: float = 600.0
    refresh_timeout_seconds: float = 30.0

    # Terminal rate limit
    max_commands_per_minute: int = 10
    rate_limit_window_seconds: float = 60.0

    # Jobs
    max_concurrent_jobs: int = 10
    max_job_duration_seconds: float = 600.0
    job_progress_interval_seconds: float = 0.1
    job_completion_grace_seconds: float = 2.0

    # Snapshot persistence
    state_path: str = Field(default="")
    state_quota_bytes: int = 5 * 1024 * 1024

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    max_log_entries: int = 200

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton – import this from anywhere
settings = Settings()

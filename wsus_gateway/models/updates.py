"""WSUS synchronization and update approval models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SyncResult(BaseModel):
    success: bool = False
    message: str = ""


class SyncStatus(BaseModel):
    status: str = "Unknown"
    last_sync_time: str = "Never"
    last_sync_result: str = "Unknown"
    next_sync_time: str = "Not scheduled"


class PendingUpdate(BaseModel):
    id: str
    title: str = ""
    classification: str = ""
    severity: str = "Unknown"
    release_date: str = ""


class ApprovalResult(BaseModel):
    approved: int = 0
    failed: int = 0


class DeclineResult(BaseModel):
    declined: int = 0
    failed: int = 0


class ApproveUpdatesRequest(BaseModel):
    update_ids: list[str] = Field(default_factory=list)
    target_group: str = "All Computers"


class DeclineUpdatesRequest(BaseModel):
    update_ids: list[str] = Field(default_factory=list)

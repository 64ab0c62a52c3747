"""
Models of the JSON documents exchanged with the ReductStore API.

Unknown fields sent by newer servers are ignored.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class QuotaType(str, Enum):
    """Quota policy of a bucket."""

    NONE = "NONE"
    FIFO = "FIFO"
    HARD = "HARD"


class Status(str, Enum):
    """Status of a bucket or an entry."""

    READY = "READY"
    DELETING = "DELETING"


class ReplicationMode(str, Enum):
    """Whether a replication transfers records."""

    ENABLED = "enabled"
    PAUSED = "paused"
    DISABLED = "disabled"


class BucketSettings(BaseModel):
    """Settings of a bucket. Unset fields use the server defaults."""

    max_block_size: int | None = None
    max_block_records: int | None = None
    quota_type: QuotaType | None = None
    quota_size: int | None = None


class Defaults(BaseModel):
    """Server defaults for new buckets."""

    bucket: BucketSettings = Field(default_factory=BucketSettings)


class LicenseInfo(BaseModel):
    """License of the server."""

    licensee: str = "UNKNOWN"
    invoice: str = "UNKNOWN"
    expiry_date: datetime | None = None
    plan: str = "UNKNOWN"
    device_number: int = 0
    disk_quota: int = 0
    fingerprint: str = "UNKNOWN"


class ServerInfo(BaseModel):
    """Server statistics returned by ``GET /info``."""

    version: str
    bucket_count: int = 0
    usage: int = 0
    uptime: int = 0
    oldest_record: int = 0
    latest_record: int = 0
    license: LicenseInfo | None = None
    defaults: Defaults = Field(default_factory=Defaults)


class BucketInfo(BaseModel):
    """Statistics of a bucket."""

    name: str
    entry_count: int = 0
    size: int = 0
    oldest_record: int = 0
    latest_record: int = 0
    is_provisioned: bool = False
    status: Status = Status.READY

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> Any:
        return value if value in (s.value for s in Status) else Status.READY


class EntryInfo(BaseModel):
    """Statistics of an entry."""

    name: str
    block_count: int = 0
    record_count: int = 0
    size: int = 0
    oldest_record: int = 0
    latest_record: int = 0
    status: Status = Status.READY

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> Any:
        return value if value in (s.value for s in Status) else Status.READY


class FullBucketInfo(BaseModel):
    """Everything ``GET /b/<bucket>`` returns."""

    info: BucketInfo
    settings: BucketSettings = Field(default_factory=BucketSettings)
    entries: list[EntryInfo] = Field(default_factory=list)


class TokenPermissions(BaseModel):
    """Access granted by a token."""

    full_access: bool = False
    read: list[str] = Field(default_factory=list)
    write: list[str] = Field(default_factory=list)


class Token(BaseModel):
    """An API token (without its value)."""

    name: str
    created_at: datetime
    is_provisioned: bool = False
    permissions: TokenPermissions | None = None


class TokenCreateResponse(BaseModel):
    """Response to creating a token. The value is only returned once."""

    value: str
    created_at: datetime


class ReplicationInfo(BaseModel):
    """State of a replication."""

    name: str
    is_active: bool = False
    is_provisioned: bool = False
    pending_records: int = 0


class ReplicationSettings(BaseModel):
    """Settings of a replication."""

    src_bucket: str
    dst_bucket: str
    dst_host: str
    dst_token: str | None = None
    entries: list[str] = Field(default_factory=list)
    include: dict[str, str] | None = None
    exclude: dict[str, str] | None = None
    each_s: float | None = None
    each_n: int | None = None
    when: dict[str, Any] | None = None
    mode: ReplicationMode = ReplicationMode.ENABLED

    @field_validator("mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: Any) -> Any:
        if value in (m.value for m in ReplicationMode):
            return value
        return ReplicationMode.ENABLED


class DiagnosticsError(BaseModel):
    count: int = 0
    last_message: str = ""


class DiagnosticsItem(BaseModel):
    ok: int = 0
    errored: int = 0
    errors: dict[int, DiagnosticsError] = Field(default_factory=dict)


class Diagnostics(BaseModel):
    """Transfer statistics of a replication."""

    hourly: DiagnosticsItem = Field(default_factory=DiagnosticsItem)


class FullReplicationInfo(BaseModel):
    """Everything ``GET /replications/<name>`` returns."""

    info: ReplicationInfo
    settings: ReplicationSettings
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)

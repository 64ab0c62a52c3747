"""Tests for the API models."""

from reduct.messages import (
    BucketInfo,
    EntryInfo,
    FullBucketInfo,
    FullReplicationInfo,
    QuotaType,
    ReplicationMode,
    ServerInfo,
    Status,
    Token,
)


class TestServerInfo:
    """Tests for ServerInfo."""

    def test_parse(self) -> None:
        info = ServerInfo.model_validate(
            {
                "version": "1.18.0",
                "bucket_count": 2,
                "usage": 1024,
                "uptime": 60,
                "oldest_record": 1,
                "latest_record": 2,
                "defaults": {
                    "bucket": {
                        "max_block_size": 64000000,
                        "max_block_records": 256,
                        "quota_type": "NONE",
                        "quota_size": 0,
                    }
                },
                "unknown_field": "ignored",
            }
        )
        assert info.version == "1.18.0"
        assert info.license is None
        assert info.defaults.bucket.quota_type is QuotaType.NONE
        assert info.defaults.bucket.max_block_records == 256

    def test_minimal(self) -> None:
        info = ServerInfo.model_validate({"version": "1.0.0"})
        assert info.bucket_count == 0
        assert info.defaults.bucket.quota_type is None


class TestBucketInfo:
    """Tests for bucket and entry models."""

    def test_full_info(self) -> None:
        full = FullBucketInfo.model_validate(
            {
                "info": {"name": "data", "entry_count": 1, "size": 10},
                "settings": {"quota_type": "FIFO", "quota_size": 100},
                "entries": [{"name": "sensor", "record_count": 3, "status": "DELETING"}],
            }
        )
        assert full.info.name == "data"
        assert full.info.status is Status.READY
        assert full.settings.quota_type is QuotaType.FIFO
        assert full.entries[0].status is Status.DELETING

    def test_unknown_status_defaults_to_ready(self) -> None:
        assert BucketInfo(name="b", status="ARCHIVED").status is Status.READY
        assert EntryInfo.model_validate({"name": "e", "status": None}).status is Status.READY


class TestTokenAndReplication:
    """Tests for token and replication models."""

    def test_token(self) -> None:
        token = Token.model_validate(
            {
                "name": "reader",
                "created_at": "2024-01-01T00:00:00Z",
                "permissions": {"full_access": False, "read": ["data"]},
            }
        )
        assert token.created_at.year == 2024
        assert token.permissions.read == ["data"]
        assert token.permissions.write == []

    def test_replication_detail(self) -> None:
        detail = FullReplicationInfo.model_validate(
            {
                "info": {"name": "r", "is_active": True, "pending_records": 5},
                "settings": {
                    "src_bucket": "a",
                    "dst_bucket": "b",
                    "dst_host": "http://remote:8383",
                    "entries": ["sensor"],
                    "mode": "paused",
                },
                "diagnostics": {
                    "hourly": {
                        "ok": 10,
                        "errored": 1,
                        "errors": {"404": {"count": 1, "last_message": "Not found"}},
                    }
                },
            }
        )
        assert detail.info.pending_records == 5
        assert detail.settings.mode is ReplicationMode.PAUSED
        assert detail.diagnostics.hourly.errors[404].last_message == "Not found"

    def test_replication_mode_defaults_to_enabled(self) -> None:
        detail = FullReplicationInfo.model_validate(
            {
                "info": {"name": "r"},
                "settings": {"src_bucket": "a", "dst_bucket": "b", "dst_host": "h"},
            }
        )
        assert detail.settings.mode is ReplicationMode.ENABLED

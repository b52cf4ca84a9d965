"""Tests for the monitor_device_status snapshot script."""

from unittest.mock import MagicMock

from monitor_device_status import format_time_remaining, get_device_status, print_device_status
from netwatch.models.device import DeviceStatus


class TestFormatTimeRemaining:
    def test_none(self):
        assert format_time_remaining(None) == "No TTL"

    def test_expired(self):
        assert format_time_remaining(0) == "Expired"

    def test_seconds(self):
        assert format_time_remaining(42) == "42s"

    def test_minutes(self):
        assert format_time_remaining(125) == "2m 5s"

    def test_hours(self):
        assert format_time_remaining(3725) == "1h 2m 5s"


class TestGetDeviceStatus:
    def test_without_heartbeats(self, registry):
        registry.upsert("10.0.0.5", {"hostname": "host1", "device_type": "router"})
        info = get_device_status(registry)
        assert len(info) == 1
        assert info[0]["ip"] == "10.0.0.5"
        assert info[0]["status"] == "down"
        assert info[0]["changes"] == 1
        assert info[0]["ttl_formatted"] == "-"

    def test_with_heartbeats(self, registry):
        registry.upsert("10.0.0.5", {"status": DeviceStatus.UP})
        heartbeats = MagicMock()
        heartbeats.get_ttl.return_value = 50
        heartbeats.last_heartbeat.return_value = None
        info = get_device_status(registry, heartbeats)
        assert info[0]["ttl_formatted"] == "50s"

    def test_prints_table(self, registry, capsys):
        registry.upsert("10.0.0.5", {"hostname": "host1"})
        print_device_status(get_device_status(registry))
        out = capsys.readouterr().out
        assert "10.0.0.5" in out
        assert "Total devices: 1" in out

    def test_prints_empty(self, capsys):
        print_device_status([])
        assert "No devices found" in capsys.readouterr().out

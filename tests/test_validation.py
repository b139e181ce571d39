from __future__ import annotations

import pytest

from wsus_gateway.utils.validation import (
    validate_command_input,
    validate_hostname,
    validate_id,
    validate_update_id,
)


@pytest.mark.parametrize("host", ["wsus01", "wsus01.corp.local", "10.0.0.5", "a-b"])
def test_valid_hostnames(host):
    assert validate_hostname(host) == host


@pytest.mark.parametrize("host", [None, "", "bad host", "x;rm", "a" * 256, "srv_01"])
def test_invalid_hostnames(host):
    assert validate_hostname(host) is None


def test_command_input():
    assert validate_command_input("status")
    assert not validate_command_input("   ")
    assert not validate_command_input(42)
    assert not validate_command_input("x" * 1001)
    assert validate_command_input("x" * 10, max_length=10)


def test_ids():
    assert validate_id("abc123")
    assert not validate_id("")
    assert not validate_id("  ")
    assert not validate_id(None)
    assert not validate_id("x" * 101)


@pytest.mark.parametrize("value,ok", [
    ("3f2b9c1e-7a4d-4e8b-9c0f-1a2b3c4d5e6f", True),
    ("3F2B9C1E-7A4D-4E8B-9C0F-1A2B3C4D5E6F", True),
    ("{3f2b9c1e-7a4d-4e8b-9c0f-1a2b3c4d5e6f}", False),
    ("3f2b9c1e-7a4d-4e8b-9c0f-1a2b3c4d5e6f\n", False),
    ("KB5031455", False),
    (None, False),
])
def test_update_id(value, ok):
    assert validate_update_id(value) is ok

"""Tests for platform utilities."""
import os
import socket

import pytest

from sar.errors import AuthorizationMismatch
from sar.platform_utils import (
    is_macos, is_linux,
    expand_path, get_home_dir, get_ssh_dir, peer_credentials
)


def test_platform_detection():
    """Test platform detection functions."""
    # They should be mutually exclusive
    assert not (is_macos() and is_linux())


def test_expand_path(monkeypatch):
    """Test path expansion."""
    home = get_home_dir()
    expanded = expand_path("~/test")
    assert str(expanded).startswith(str(home))

    # Test with environment variable
    monkeypatch.setenv("TEST_VAR", "/tmp")
    expanded = expand_path("$TEST_VAR/test")
    assert "/tmp/test" in str(expanded)


def test_get_ssh_dir():
    """Test SSH directory path."""
    ssh_dir = get_ssh_dir()
    assert ssh_dir.name == ".ssh"
    assert ssh_dir.parent == get_home_dir()


@pytest.mark.skipif(not (is_linux() or is_macos()), reason="needs peer credentials")
def test_peer_credentials():
    """Test that the peer of a socket pair is ourselves."""
    a, b = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        assert peer_credentials(a) == os.geteuid()
    finally:
        a.close()
        b.close()


def test_peer_credentials_closed_socket():
    """Test that unreadable credentials raise AuthorizationMismatch."""
    a, b = socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)
    b.close()
    a.close()
    with pytest.raises((AuthorizationMismatch, OSError)):
        peer_credentials(a)

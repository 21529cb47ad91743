"""Tests for the tmux integration, with tmux itself stubbed out."""
import os
import subprocess

import pytest

from sar.errors import MultiplexerError
from sar.multiplexer import TmuxMultiplexer, parse_tmux_env


class FakeRun:
    """Records tmux invocations and returns canned output."""

    def __init__(self, stdout="", error=None):
        self.stdout = stdout
        self.error = error
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        if self.error is not None:
            raise self.error
        return subprocess.CompletedProcess(cmd, 0, stdout=self.stdout, stderr="")


@pytest.fixture
def tmux_socket(make_tty):
    return make_tty("tmux-default")


@pytest.fixture
def tmux(tmux_socket):
    return TmuxMultiplexer("{},{},0".format(tmux_socket, os.getpid()))


@pytest.mark.parametrize("value, expected", [
    ("/tmp/tmux-1000/default,1234,0", ("/tmp/tmux-1000/default", 1234)),
    ("/tmp/tmux-1000/default,1234", ("/tmp/tmux-1000/default", 1234)),
    ("", None),
    (None, None),
    ("/tmp/tmux-1000/default", None),
    (",1234,0", None),
    ("/tmp/tmux-1000/default,abc,0", None),
])
def test_parse_tmux_env(value, expected):
    assert parse_tmux_env(value) == expected


def test_outside_tmux():
    with pytest.raises(MultiplexerError):
        TmuxMultiplexer("")


def test_is_alive(tmux, tmux_socket):
    """Test liveness follows the tmux socket and server process."""
    assert tmux.is_alive()
    os.unlink(tmux_socket)
    assert not tmux.is_alive()


def test_focused_terminal_is_most_recent_client(tmux, monkeypatch):
    """Test that the most recently active client wins."""
    run = FakeRun("1700000010 /dev/pts/1\n1700000030 /dev/pts/3\n1700000020 /dev/pts/2\n")
    monkeypatch.setattr("sar.multiplexer.subprocess.run", run)

    assert tmux.current_focused_terminal() == "/dev/pts/3"
    assert run.calls[0][:3] == ["tmux", "-S", tmux.socket_path]
    assert "list-clients" in run.calls[0]


def test_focused_terminal_without_clients(tmux, monkeypatch):
    monkeypatch.setattr("sar.multiplexer.subprocess.run", FakeRun(""))
    assert tmux.current_focused_terminal() is None


def test_focused_terminal_ignores_garbage(tmux, monkeypatch):
    monkeypatch.setattr("sar.multiplexer.subprocess.run", FakeRun("x /dev/pts/1\n42\n7 /dev/pts/2\n"))
    assert tmux.current_focused_terminal() == "/dev/pts/2"


def test_focused_terminal_when_tmux_fails(tmux, monkeypatch):
    """Test that a failing tmux means no focused terminal."""
    error = subprocess.CalledProcessError(1, ["tmux"])
    monkeypatch.setattr("sar.multiplexer.subprocess.run", FakeRun(error=error))
    assert tmux.current_focused_terminal() is None


def test_client_terminal(tmux, monkeypatch):
    monkeypatch.setattr("sar.multiplexer.subprocess.run", FakeRun("/dev/pts/7\n"))
    assert tmux.current_client_terminal() == "/dev/pts/7"

    monkeypatch.setattr("sar.multiplexer.subprocess.run", FakeRun("\n"))
    assert tmux.current_client_terminal() is None


def test_publish(tmux, monkeypatch):
    run = FakeRun()
    monkeypatch.setattr("sar.multiplexer.subprocess.run", run)
    tmux.publish("SSH_AUTH_SOCK", "/tmp/router.sock")
    assert run.calls[0][3:] == ["set-environment", "-g", "SSH_AUTH_SOCK", "/tmp/router.sock"]


@pytest.mark.parametrize("error", [
    subprocess.CalledProcessError(1, ["tmux"]),
    subprocess.TimeoutExpired(["tmux"], 5),
    FileNotFoundError("tmux"),
])
def test_publish_failure(tmux, monkeypatch, error):
    """Test that publishing errors surface as MultiplexerError."""
    monkeypatch.setattr("sar.multiplexer.subprocess.run", FakeRun(error=error))
    with pytest.raises(MultiplexerError):
        tmux.publish("SSH_AUTH_SOCK", "/tmp/router.sock")

"""Shared fixtures: short socket directories, fake agents, a fake tmux."""
import os
import shutil
import socketserver
import tempfile
import threading

import pytest

from sar.lifecycle import RouterInstance
from sar.protocol import Frame, SSH_AGENT_SUCCESS, read_frame, write_frame


class FakeMultiplexer:
    """Stands in for tmux: a settable focused terminal and liveness."""

    def __init__(self):
        self.alive = True
        self.focused = None
        self.client_terminal = None
        self.published = {}

    def is_alive(self):
        return self.alive

    def current_focused_terminal(self):
        return self.focused

    def current_client_terminal(self):
        return self.client_terminal

    def publish(self, name, value):
        self.published[name] = value


class FakeAgentHandler(socketserver.BaseRequestHandler):
    def handle(self):
        while True:
            frame = read_frame(self.request)
            if frame is None:
                return
            self.server.requests.append(frame.encode())
            write_frame(self.request, self.server.reply.type, self.server.reply.body)


class FakeAgent(socketserver.ThreadingUnixStreamServer):
    """Upstream agent answering every request with the same frame."""
    daemon_threads = True

    def __init__(self, path, reply):
        self.path = path
        self.reply = reply
        self.requests = []
        socketserver.ThreadingUnixStreamServer.__init__(self, path, FakeAgentHandler)


@pytest.fixture
def sock_dir():
    # Unix socket paths are limited to ~100 bytes, keep them short
    path = tempfile.mkdtemp(prefix="sar-", dir="/tmp")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def make_tty(sock_dir):
    """Create a file standing in for a terminal device."""
    def _make_tty(name):
        path = os.path.join(sock_dir, name)
        open(path, "w").close()
        return path
    return _make_tty


@pytest.fixture
def fake_agent(sock_dir):
    """Start fake upstream agents that reply SSH_AGENT_SUCCESS with their name."""
    agents = []

    def _fake_agent(name):
        agent = FakeAgent(os.path.join(sock_dir, name + ".sock"),
                          Frame(SSH_AGENT_SUCCESS, name.encode()))
        thread = threading.Thread(target=agent.serve_forever, kwargs={"poll_interval": 0.05})
        thread.daemon = True
        thread.start()
        agents.append((agent, thread))
        return agent

    yield _fake_agent

    for agent, thread in agents:
        agent.shutdown()
        agent.server_close()
        thread.join(5)


@pytest.fixture
def multiplexer():
    return FakeMultiplexer()


def serve_in_thread(instance):
    """Serve an opened instance in a thread, closing it when the loop ends."""
    def _serve():
        try:
            instance.serve()
        finally:
            instance.close()

    thread = threading.Thread(target=_serve)
    thread.start()
    return thread


@pytest.fixture
def router(sock_dir, multiplexer):
    """A running router on <sock_dir>/router.sock."""
    instance = RouterInstance(os.path.join(sock_dir, "router.sock"), multiplexer,
                              poll_interval=0.05, upstream_timeout=2)
    instance.open()
    thread = serve_in_thread(instance)
    yield instance
    instance.stop()
    thread.join(5)
    instance.close()

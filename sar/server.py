# Copyright 2015, IBM
# Copyright 2024, Wim Bonis, Stylite AG
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
The routing agent socket: one thread per client connection, every request
forwarded to the upstream agent of the focused tmux client.
"""
import logging
import os
import select
import socketserver
import threading
from typing import Optional, Tuple

from .control import EXTENSION_ID, ControlHandler
from .errors import AuthorizationMismatch, ProtocolError, UpstreamUnavailable
from .platform_utils import peer_credentials
from .protocol import (
    Frame, SSH_AGENT_FAILURE, SSH_AGENTC_EXTENSION,
    decode_extension, hex_dump_chunks, read_frame
)
from .registry import AgentRegistry
from .socket_utils import connect_unix

LOG = logging.getLogger(__name__)

SSH_AGENT_FAILURE_FRAME = Frame(SSH_AGENT_FAILURE)


def forward_request(upstream: str, frame: Frame, timeout: Optional[float]) -> Frame:
    """
    Send one frame to an upstream agent over a fresh connection.

    Raises:
        UpstreamUnavailable: If the agent cannot be reached or does not answer
    """
    try:
        with connect_unix(upstream, timeout) as sock:
            sock.sendall(frame.encode())
            reply = read_frame(sock)
    except (OSError, ProtocolError) as e:
        raise UpstreamUnavailable("{}: {}".format(upstream, e))

    if reply is None:
        raise UpstreamUnavailable("{}: closed without reply".format(upstream))
    return reply


class AgentRouterRequestHandler(socketserver.BaseRequestHandler):
    """
    Handle a single SSH agent session
    """

    def setup(self):
        # A frame that starts arriving must finish within the upstream timeout
        self.request.settimeout(self.server.upstream_timeout)
        self.server.connection_opened(self.request)

    def finish(self):
        self.server.connection_closed(self.request)

    def handle(self):
        try:
            for frame in self._each_frame():
                LOG.debug("request: type:%d len:%d", frame.type, len(frame.body) + 1)
                control = self._control_request(frame)
                if control is None:
                    self.request.sendall(self._forward(frame).encode())
                    continue

                reply = self.server.control.handle(*control)
                self.request.sendall(reply.frame.encode())
                if reply.stop:
                    self.server.stop()
        except ProtocolError as e:
            LOG.warning("Dropping client connection: %s", e)
        except OSError as e:
            LOG.debug("Client connection error: %s", e)

    def _each_frame(self):
        """
        Iterate over agent protocol messages until EOF or the server stops
        """
        while not self.server.stopped:
            readable, _, _ = select.select([self.request], [], [],
                                           self.server.poll_interval)
            if not readable:
                continue

            frame = read_frame(self.request)
            if frame is None:
                return
            yield frame

    def _control_request(self, frame: Frame) -> Optional[Tuple[int, bytes]]:
        if frame.type != SSH_AGENTC_EXTENSION:
            return None
        try:
            ext_id, sub_type, sub_body = decode_extension(frame.body)
        except ProtocolError:
            return None
        if ext_id != EXTENSION_ID:
            return None
        return sub_type, sub_body

    def _forward(self, frame: Frame) -> Frame:
        terminal_id = self.server.multiplexer.current_focused_terminal()
        upstream = self.server.registry.route(terminal_id)
        if upstream is None:
            LOG.debug("No agent for terminal %s", terminal_id)
            return SSH_AGENT_FAILURE_FRAME

        try:
            return forward_request(upstream, frame, self.server.upstream_timeout)
        except UpstreamUnavailable as e:
            LOG.warning("upstream agent error: %s", e)
            for chunk in hex_dump_chunks(frame.encode()):
                LOG.debug("upstream agent request: %s", chunk)
            return SSH_AGENT_FAILURE_FRAME


class AgentRouter(socketserver.ThreadingUnixStreamServer):
    """
    Agent socket that routes requests by focused terminal.

    Args:
        listen_address: Path of the Unix socket to bind
        registry: Routing table shared by all connections
        multiplexer: Object with is_alive() and current_focused_terminal()
        poll_interval: Seconds to wait for a connection or a request before
            re-checking the stop flag and the multiplexer
        upstream_timeout: Seconds to wait for an upstream agent
    """
    daemon_threads = False
    block_on_close = True

    def __init__(self, listen_address: str, registry: AgentRegistry, multiplexer,
                 poll_interval: float = 1.0, upstream_timeout: Optional[float] = 30.0,
                 bind_and_activate: bool = True):
        self.registry = registry
        self.multiplexer = multiplexer
        self.control = ControlHandler(registry, listen_address)
        self.poll_interval = poll_interval
        self.timeout = poll_interval
        self.upstream_timeout = upstream_timeout
        self.connections = set()
        self._connections_lock = threading.Lock()
        self._stopped = threading.Event()
        socketserver.ThreadingUnixStreamServer.__init__(
            self, listen_address, AgentRouterRequestHandler, bind_and_activate)

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def stop(self) -> None:
        """Ask the accept loop and every connection loop to finish."""
        if not self._stopped.is_set():
            LOG.info("Stopping agent router on %s", self.server_address)
        self._stopped.set()

    def connection_opened(self, request) -> None:
        with self._connections_lock:
            self.connections.add(request)

    def connection_closed(self, request) -> None:
        with self._connections_lock:
            self.connections.discard(request)

    def verify_request(self, request, client_address) -> bool:
        """Only accept connections from processes running as our own user."""
        try:
            uid = peer_credentials(request)
            if uid != os.geteuid():
                raise AuthorizationMismatch("connection from uid {} denied".format(uid))
        except AuthorizationMismatch as e:
            LOG.warning("%s", e)
            return False
        return True

    def handle_error(self, request, client_address):
        LOG.exception("Unhandled error in client connection")

    def serve_until_stopped(self) -> None:
        """
        Accept connections until stopped or until tmux is gone.

        Stale registry entries are pruned before every accept.
        """
        while not self.stopped and self.multiplexer.is_alive():
            self.registry.prune()
            self.handle_request()

        if not self.stopped:
            LOG.info("tmux server is gone, shutting down")
            self.stop()

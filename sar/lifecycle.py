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
Router instance lifecycle: singleton lock, socket file, serve loop, shutdown,
and detaching into the background.
"""
import fcntl
import logging
import multiprocessing
import os
import signal
import sys
import threading
from typing import Optional

from .config import PUBLISHED_VARIABLE, lock_path_for
from .errors import InstanceConflict, SarError
from .logging_utils import setup_logging
from .registry import AgentRegistry
from .server import AgentRouter
from .socket_utils import remove_socket, same_socket

LOG = logging.getLogger(__name__)

# umask is process wide
_UMASK_LOCK = threading.Lock()


class RouterInstance:
    """
    One agent router bound to one listen address.

    Args:
        listen_address: Path of the Unix socket to serve
        multiplexer: tmux collaborator (is_alive, current_focused_terminal, publish)
        seed_agent: Agent socket this process inherited, if any
        seed_terminal: Terminal this process was started from, if known
        set_default: Also make seed_agent the default agent
    """

    def __init__(self, listen_address: str, multiplexer,
                 seed_agent: Optional[str] = None,
                 seed_terminal: Optional[str] = None,
                 set_default: bool = True,
                 poll_interval: float = 1.0,
                 upstream_timeout: Optional[float] = 30.0):
        self.listen_address = listen_address
        self.lock_path = lock_path_for(listen_address)
        self.multiplexer = multiplexer
        self.seed_agent = seed_agent
        self.seed_terminal = seed_terminal
        self.set_default = set_default
        self.poll_interval = poll_interval
        self.upstream_timeout = upstream_timeout
        self.registry = AgentRegistry()
        self.server: Optional[AgentRouter] = None
        self._lock_file = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *args):
        self.close()

    def _acquire_lock(self) -> None:
        # "a+" so every opener gets the same inode, flock is per inode
        lock_file = open(self.lock_path, "a+")
        try:
            fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            lock_file.close()
            raise InstanceConflict(
                "another instance is running on {}".format(self.listen_address))
        except OSError:
            lock_file.close()
            raise

        lock_file.seek(0)
        lock_file.truncate()
        lock_file.write("{}\n".format(os.getpid()))
        lock_file.flush()
        self._lock_file = lock_file

    def _release_lock(self) -> None:
        if self._lock_file is None:
            return
        fcntl.flock(self._lock_file, fcntl.LOCK_UN)
        self._lock_file.close()
        self._lock_file = None

    def _seed(self) -> None:
        agent = self.seed_agent
        if not agent:
            return
        if same_socket(agent, self.listen_address):
            LOG.debug("Inherited agent is the router itself, not seeding")
            return

        if self.seed_terminal:
            self.registry.add(self.seed_terminal, agent)
        if self.set_default:
            self.registry.add("", agent)

    def open(self) -> AgentRouter:
        """
        Take the lock, bind the socket, seed the registry and publish the
        socket path to tmux.

        Raises:
            InstanceConflict: If another instance holds the lock
            OSError: If the socket cannot be created
        """
        with _UMASK_LOCK:
            # Neither the socket nor the lock file may be group or world accessible
            old_umask = os.umask(0o177)
            try:
                self._acquire_lock()
                try:
                    remove_socket(self.listen_address)
                    self.server = AgentRouter(
                        self.listen_address, self.registry, self.multiplexer,
                        poll_interval=self.poll_interval,
                        upstream_timeout=self.upstream_timeout)
                except BaseException:
                    self._release_lock()
                    raise
            finally:
                os.umask(old_umask)

        try:
            self._seed()
            self.multiplexer.publish(PUBLISHED_VARIABLE, self.listen_address)
        except BaseException:
            self.close()
            raise

        LOG.info("Agent router listening on %s", self.listen_address)
        return self.server

    def stop(self) -> None:
        if self.server is not None:
            self.server.stop()

    def serve(self) -> None:
        self.server.serve_until_stopped()

    def close(self) -> None:
        """
        Wait for all connection handlers, then remove the socket and release
        the lock. Safe to call more than once.
        """
        if self.server is not None:
            self.server.stop()
            # Joins every handler thread
            self.server.server_close()
            remove_socket(self.listen_address)
            self.server = None
            LOG.info("Agent router on %s stopped", self.listen_address)
        self._release_lock()

    def run(self) -> None:
        self.open()
        try:
            self.serve()
        finally:
            self.close()


def _install_stop_handlers(instance: RouterInstance) -> None:
    def stop_handler(signo, frame):
        LOG.debug("Signal %d received, stopping", signo)
        instance.stop()

    signal.signal(signal.SIGTERM, stop_handler)
    signal.signal(signal.SIGINT, stop_handler)
    # Closing the terminal that started us must not kill the router
    signal.signal(signal.SIGHUP, signal.SIG_IGN)


def run_foreground(instance: RouterInstance) -> None:
    """Serve in the current process until killed, stopped or tmux exits."""
    _install_stop_handlers(instance)
    instance.run()


def daemonize(target=None, stdin='/dev/null', stdout='/dev/null',
              stderr='/dev/null', args=(), kwargs=None) -> int:
    """
    Run target in a detached grandchild process.

    Returns:
        The grandchild's pid (in the calling process only; the grandchild
        never returns from this function)
    """
    kwargs = kwargs or {}

    # First fork (detaches from parent)
    try:
        r, w = os.pipe()
        child = os.fork()
        if child > 0:
            os.close(w)
            with os.fdopen(r) as pid_pipe:
                line = pid_pipe.readline().strip()
            os.waitpid(child, 0)
            if not line:
                raise SarError("fork #2 failed")
            return int(line)
    except OSError as e:
        raise SarError('fork #1 failed: {}'.format(e))

    os.chdir('/')
    os.umask(0o077)
    os.setsid()

    # Second fork (relinquish session leadership)
    try:
        child = os.fork()
        if child > 0:
            os.close(r)
            # Pass child (grandchild)'s pid to parent.
            os.write(w, '{}\n'.format(child).encode())
            os._exit(0)
    except OSError:
        os._exit(1)

    os.close(r)
    os.close(w)

    # Flush I/O buffers
    sys.stdout.flush()
    sys.stderr.flush()

    # Replace file descriptors for stdin, stdout, and stderr
    with open(stdin, 'rb', 0) as f:
        os.dup2(f.fileno(), sys.stdin.fileno())
    with open(stdout, 'ab', 0) as f:
        os.dup2(f.fileno(), sys.stdout.fileno())
    with open(stderr, 'ab', 0) as f:
        os.dup2(f.fileno(), sys.stderr.fileno())

    exit_code = 1
    try:
        target(*args, **kwargs)
        exit_code = 0
    except Exception:
        LOG.exception("Agent router failed")
    finally:
        logging.shutdown()
        os._exit(exit_code)


def _daemon_main(ready_pipein, ready_pipeout, instance: RouterInstance, level: int) -> None:
    # Only the parent reads the readiness message
    ready_pipein.close()
    setup_logging(level)
    try:
        instance.open()
    except InstanceConflict as e:
        ready_pipeout.send(("conflict", str(e)))
        ready_pipeout.close()
        raise
    except Exception as e:
        ready_pipeout.send(("error", str(e)))
        ready_pipeout.close()
        raise

    # Let parent know the socket is ready
    ready_pipeout.send(("ok", instance.listen_address))
    ready_pipeout.close()

    _install_stop_handlers(instance)
    try:
        instance.serve()
    finally:
        instance.close()


def start_background(instance: RouterInstance, log_file: Optional[str] = None,
                     level: int = logging.INFO) -> int:
    """
    Start the router as a daemon and wait until it is listening.

    Returns:
        The daemon's pid

    Raises:
        InstanceConflict: If another instance owns the listen address
        SarError: If the daemon failed to start
    """
    ready_pipein, ready_pipeout = multiprocessing.Pipe(duplex=False)
    pid = daemonize(target=_daemon_main,
                    stderr=log_file or '/dev/null',
                    args=(ready_pipein, ready_pipeout, instance, level))
    ready_pipeout.close()

    # Wait for server to setup listening socket
    try:
        status, message = ready_pipein.recv()
    except EOFError:
        raise SarError("agent router exited before it was ready")
    finally:
        ready_pipein.close()

    if status == "conflict":
        raise InstanceConflict(message)
    if status != "ok":
        raise SarError("agent router failed to start: {}".format(message))
    return pid

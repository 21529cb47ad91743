"""
CLI interface using argparse (standard library).
"""
import argparse
import logging
import os
import sys
from typing import List, Optional

from . import __version__
from .client import RouterClient
from .config import (
    get_log_file, get_poll_interval, get_socket_path, get_upstream_timeout,
    is_debug
)
from .errors import SarError
from .lifecycle import RouterInstance, run_foreground, start_background
from .logging_utils import (
    log_debug, log_error, log_info, log_success, log_warn, setup_logging
)
from .multiplexer import TmuxMultiplexer
from .socket_utils import check_agent_socket


def start_router(socket_path: str, no_default: bool, foreground: bool) -> None:
    """Start the router for the tmux server we are running in."""
    if not os.environ.get("TMUX"):
        log_error("start must be run inside a tmux session")
        sys.exit(1)

    multiplexer = TmuxMultiplexer()
    seed_agent = os.environ.get("SSH_AUTH_SOCK") or None
    seed_terminal = multiplexer.current_client_terminal()
    log_debug(f"Inherited agent: {seed_agent}, terminal: {seed_terminal}")

    instance = RouterInstance(
        socket_path, multiplexer,
        seed_agent=seed_agent,
        seed_terminal=seed_terminal,
        set_default=not no_default,
        poll_interval=get_poll_interval(),
        upstream_timeout=get_upstream_timeout()
    )
    level = logging.DEBUG if is_debug() else logging.INFO

    if foreground:
        setup_logging(level, get_log_file())
        run_foreground(instance)
        return

    pid = start_background(instance, log_file=get_log_file(), level=level)

    log_success(f"Agent router started on {socket_path} (PID {pid})")
    print(socket_path)


def stop_router(socket_path: str) -> None:
    """Ask the running router to shut down."""
    RouterClient(socket_path).kill()
    log_success(f"Agent router on {socket_path} stopped")


def add_agent(socket_path: str, tty: Optional[str], agent: Optional[str],
              default: bool, no_agent: bool) -> None:
    """Register the calling terminal's agent with the router."""
    if default:
        terminal_id = ""
    elif tty:
        terminal_id = os.path.abspath(tty)
    else:
        try:
            terminal_id = os.ttyname(sys.stdin.fileno())
        except OSError:
            log_error("stdin is not a terminal, use --tty")
            sys.exit(1)

    if no_agent:
        upstream = None
    else:
        upstream = agent or os.environ.get("SSH_AUTH_SOCK")
        if not upstream:
            log_error("No agent given and SSH_AUTH_SOCK is not set")
            sys.exit(1)
        upstream = os.path.abspath(upstream)
        if not check_agent_socket(upstream):
            log_warn(f"{upstream} is not a socket, requests routed to it will fail")

    RouterClient(socket_path).add_agent(terminal_id, upstream)
    log_success(f"Agent for {terminal_id or 'default'}: {upstream or '(none)'}")


def list_agents(socket_path: str) -> None:
    """Print the router's registry, default agent first."""
    entries = RouterClient(socket_path).list_agents()
    if not entries:
        log_info("No agents registered")
        return
    for label, upstream in entries:
        print(f"{label or 'default'}: {upstream}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ssh-agent-router",
        description="SSH agent router - one agent socket per tmux server, "
                    "requests routed to the focused client's agent",
        allow_abbrev=False
    )
    parser.add_argument("-V", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug mode (verbose output)")
    parser.add_argument("-s", "--socket", help="Router socket path (default: $SAR_SOCKET or next to the tmux socket)")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    start = commands.add_parser("start", help="Start the router for this tmux server")
    start.add_argument("--no-default", action="store_true",
                       help="Do not make the inherited agent the default agent")
    start.add_argument("-f", "--foreground", action="store_true", help="Do not detach")

    commands.add_parser("stop", help="Stop the running router")

    add = commands.add_parser("add", help="Register an agent for a terminal")
    add.add_argument("--tty", help="Terminal device (default: the terminal on stdin)")
    add.add_argument("--agent", help="Agent socket (default: $SSH_AUTH_SOCK)")
    add.add_argument("--default", action="store_true", help="Set the default agent instead")
    add.add_argument("--no-agent", action="store_true",
                     help="Register the terminal as having no agent")

    commands.add_parser("list", help="List registered agents")
    return parser


def cli_main(argv: Optional[List[str]] = None) -> int:
    """
    Parse arguments and run one action.

    Returns:
        Process exit status
    """
    args = build_parser().parse_args(argv)

    if args.debug:
        os.environ["DEBUG"] = "1"

    socket_path = get_socket_path(args.socket)
    log_debug(f"Router socket: {socket_path}")

    try:
        if args.command == "start":
            start_router(socket_path, args.no_default, args.foreground)
        elif args.command == "stop":
            stop_router(socket_path)
        elif args.command == "add":
            add_agent(socket_path, args.tty, args.agent, args.default, args.no_agent)
        elif args.command == "list":
            list_agents(socket_path)
    except (SarError, OSError) as e:
        log_error(str(e))
        return 1
    return 0

"""
Exception hierarchy shared by the router, its control protocol and the CLI.
"""


class SarError(Exception):
    """Base class for all SSH agent router errors."""


class ProtocolError(SarError):
    """Malformed or truncated agent protocol frame."""


class UpstreamUnavailable(SarError):
    """The routed upstream agent could not be reached or did not answer."""


class RegistryValidationError(SarError):
    """An agent registration referenced a terminal or socket that does not exist."""


class InstanceConflict(SarError):
    """Another router instance already owns the listen address."""


class AuthorizationMismatch(SarError):
    """The connecting peer runs as a different user."""


class MultiplexerError(SarError):
    """A tmux command failed."""


class ControlError(SarError):
    """The router answered a control request with an unexpected reply."""

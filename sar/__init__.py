"""
SAR - SSH Agent Router

Shares one SSH agent socket between all sessions of a tmux server and routes
each request to the agent forwarded into the currently focused tmux client.
"""

__version__ = "1.0.0"
__author__ = "Wim Bonis, Stylite AG"
__license__ = "Apache License 2.0"

"""
Command layer: typed commands and their dispatch onto a server.
"""

from helpqueue.commands.dispatcher import dispatch, list_commands, register_command
from helpqueue.commands.models import Command, UnknownCommand, parse_command

__all__ = [
    "Command",
    "UnknownCommand",
    "dispatch",
    "list_commands",
    "parse_command",
    "register_command",
]

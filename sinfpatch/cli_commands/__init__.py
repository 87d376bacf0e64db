"""CLI command modules for sinfpatch."""

from sinfpatch.cli_commands.inject import register_inject_commands

__all__ = [
    "register_inject_commands",
]

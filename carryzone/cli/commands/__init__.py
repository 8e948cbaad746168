"""CLI command modules for carryzone."""

from carryzone.cli.commands.pins import cmd_pin
from carryzone.cli.commands.sync import cmd_sync

__all__ = ["cmd_pin", "cmd_sync"]

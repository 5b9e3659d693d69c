"""Command execution for pipeline tasks."""

from .executor import CommandExecutor, CommandResult, ShellCommandExecutor

__all__ = ["CommandExecutor", "CommandResult", "ShellCommandExecutor"]

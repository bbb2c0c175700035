"""
Codebox CLI - Command Line Interface for Codebox

Provides commands for:
- One-shot code execution
- Session management and artifacts
- Server start, health and statistics
"""

from codebox.cli.main import cli

__all__ = ["cli"]

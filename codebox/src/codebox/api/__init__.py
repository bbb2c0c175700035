"""
Codebox API Module

FastAPI-based HTTP API for the code-execution sandbox.
"""

from codebox.api.server import create_app, run_server

__all__ = [
    "create_app",
    "run_server",
]

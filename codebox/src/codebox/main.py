"""
Codebox Production Entry Point

Usage:
    python -m codebox.main
    # or
    uvicorn codebox.main:app --host 0.0.0.0 --port 8000
"""

from codebox.api.server import create_app
from codebox.config import get_config
from codebox.monitoring.logging import configure_logging

config = get_config()
configure_logging(level=config.log_level, json_format=config.log_json, log_file=config.log_file)

app = create_app(config)

if __name__ == "__main__":
    import uvicorn

    print(f"Starting Codebox server on {config.host}:{config.port}")
    print(f"Sandbox root: {config.sandbox_root}")

    uvicorn.run(
        app,  # Pass app directly instead of string to avoid reload issues
        host=config.host,
        port=config.port,
    )

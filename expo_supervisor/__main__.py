"""
Entry point for running expo-supervisor via `python -m expo_supervisor`.

Starts the FastAPI server with uvicorn.
"""

import uvicorn

from .config import config


def main():
    """Run the supervisor server."""
    uvicorn.run(
        "expo_supervisor.main:app",
        host=config.host,
        port=config.port,
        reload=False,
    )


if __name__ == "__main__":
    main()

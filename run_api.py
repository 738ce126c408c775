"""
Launch the chat API with uvicorn.
"""

import argparse
import os
import socket
from contextlib import closing
from pathlib import Path

import uvicorn
from dotenv import load_dotenv, find_dotenv

from app.logging import configure_logging

# Load environment variables early
load_dotenv(find_dotenv())


def _port_available(host: str, port: int) -> bool:
    """Return True if we can bind to the given host:port."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        try:
            s.bind((host, port))
            return True
        except OSError:
            return False


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the chat API")
    parser.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    parser.add_argument(
        "--reload",
        action="store_true",
        default=os.getenv("RELOAD", "0").strip().lower() not in {"0", "false", "no"},
        help="Enable auto-reload (dev only)",
    )
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "info"))
    args = parser.parse_args()

    configure_logging(args.log_level)

    host = args.host
    port = args.port
    if not _port_available(host, port):
        print(f"[run_api] Port {port} is busy; selecting an ephemeral port.")
        port = 0

    uvicorn_kwargs = dict(
        host=host,
        port=port,
        reload=args.reload,
        log_level=args.log_level.lower(),
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    if args.reload:
        base = Path(__file__).parent
        # Limit what we watch and exclude chatty directories like the venv
        uvicorn_kwargs.update(
            {
                "reload_dirs": [str(base / "app"), str(base / "api")],
                "reload_excludes": [
                    ".venv/*",
                    "**/__pycache__/*",
                    ".data/*",
                    ".vectordb/*",
                ],
            }
        )
    # Reload needs an import string; uvicorn accepts one in both modes
    uvicorn.run("api.server:app", **uvicorn_kwargs)


if __name__ == "__main__":
    main()

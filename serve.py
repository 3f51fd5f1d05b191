#!/usr/bin/env python3
"""
Menu Scrapers Server
Starts the FastAPI service (health, manual trigger, scheduler) with uvicorn.

Usage:
    python serve.py
"""

import socket
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).parent / 'backend'
sys.path.insert(0, str(BACKEND_DIR))


def check_port_in_use(host: str, port: int) -> bool:
    """Check if something is already listening on the port"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        return sock.connect_ex((host if host != '0.0.0.0' else 'localhost', port)) == 0
    finally:
        sock.close()


def main():
    import uvicorn
    from api.config import settings

    print("=" * 50)
    print("  Menu Scrapers - Server")
    print("=" * 50)

    if check_port_in_use(settings.api_host, settings.api_port):
        print(f"❌ Port {settings.api_port} already in use")
        return 1

    print(f"  API:       http://localhost:{settings.api_port}")
    print(f"  Health:    http://localhost:{settings.api_port}/health")
    if settings.scrape_interval_minutes > 0:
        print(f"  Schedule:  every {settings.scrape_interval_minutes} minutes")
    else:
        print("  Schedule:  disabled")
    print("=" * 50)

    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
        app_dir=str(BACKEND_DIR),
        log_config=None,  # Logging is configured by api.main
        timeout_keep_alive=5,
        timeout_graceful_shutdown=5.0,
    )
    return 0


if __name__ == '__main__':
    sys.exit(main())

#!/usr/bin/env python
"""
AI Proxy - Application Entry Point

This is the main entry point for running the gateway with hot reload support.

Usage:
    # Development mode (with hot reload):
    python main.py

    # Or use uvicorn directly:
    uvicorn aiproxy.main:app --host 0.0.0.0 --port 8787 --reload

Environment Variables:
    - APP_DEBUG=true: Enable debug mode
    - DEV_AUTO_RELOAD=true: Enable hot reload (debug mode only)
    - APP_ENV=development: Development environment
"""

import sys
from pathlib import Path

# Add project directory to Python path
project_dir = Path(__file__).parent.resolve()
sys.path.insert(0, str(project_dir))

import uvicorn

from aiproxy.core.config import settings


def main() -> None:
    """Run the gateway, with hot reload in debug mode."""

    # Show startup info
    print("=" * 60)
    print("Starting AI Proxy")
    print("=" * 60)
    print(f"   Environment: {settings.app.app_env}")
    print(f"   Debug Mode: {settings.app.app_debug}")
    print(f"   Hot Reload: {settings.app.app_debug and settings.dev_auto_reload}")
    print(f"   Host: {settings.app.api_host}:{settings.app.api_port}")
    print(f"   Workers: {1 if settings.app.app_debug else settings.app.api_workers}")
    print("=" * 60)
    print()

    uvicorn.run(
        "aiproxy.main:app",
        host=settings.app.api_host,
        port=settings.app.api_port,
        reload=settings.app.app_debug and settings.dev_auto_reload,
        workers=1 if settings.app.app_debug else settings.app.api_workers,
        log_level=settings.log.level.lower(),
        access_log=settings.log.requests,
        reload_dirs=[str(project_dir / "aiproxy")] if settings.app.app_debug else None,
        reload_delay=0.5,
    )


if __name__ == "__main__":
    main()

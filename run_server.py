#!/usr/bin/env python
"""
Server Entry Point

Usage:
    Development:  python run_server.py --dev
    Production:   python run_server.py

    Or with Gunicorn:
    gunicorn nanoassist.main:app -c gunicorn.conf.py
"""

import argparse
import os
import subprocess


def run_dev_server(port: int):
    """Run development server with auto-reload."""
    import uvicorn
    
    uvicorn.run(
        "nanoassist.main:app",
        host="127.0.0.1",
        port=port,
        reload=True,
        reload_dirs=["nanoassist"],
        log_level="debug",
    )


def run_prod_server(port: int):
    """
    Run with Uvicorn directly.
    
    A single worker: the process holds the operator's session.
    """
    import uvicorn
    
    uvicorn.run(
        "nanoassist.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=port,
        workers=1,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
        proxy_headers=True,
        forwarded_allow_ips="*",
        server_header=False,
    )


def run_gunicorn():
    """Run with Gunicorn."""
    subprocess.run(["gunicorn", "nanoassist.main:app", "-c", "gunicorn.conf.py"], check=False)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Nanoassist Dashboard API Server")
    parser.add_argument("--dev", action="store_true", help="Run in development mode with auto-reload")
    parser.add_argument("--gunicorn", action="store_true", help="Run with Gunicorn")
    parser.add_argument("--port", type=int, default=int(os.getenv("API_PORT", 8000)), help="Port to run on")
    
    args = parser.parse_args()
    
    if args.dev:
        run_dev_server(args.port)
    elif args.gunicorn:
        os.environ.setdefault("BIND", f"0.0.0.0:{args.port}")
        run_gunicorn()
    else:
        run_prod_server(args.port)

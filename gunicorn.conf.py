"""
Gunicorn Configuration

Uvicorn workers under Gunicorn. Keep one worker: the signed-in session
and its live subscriptions live in process memory.
"""

import os

# Server socket
bind = os.getenv("BIND", "0.0.0.0:8000")
backlog = 512

# Worker processes
workers = int(os.getenv("WORKERS", 1))
worker_class = "uvicorn.workers.UvicornWorker"
max_requests = 0
timeout = 60
keepalive = 5
graceful_timeout = 30

proc_name = "nanoassist-dashboard"

# Logging
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
accesslog = None


def when_ready(server):
    """Called when server is ready to receive connections."""
    if workers > 1:
        server.log.warning("Running %s workers; each holds its own session", workers)

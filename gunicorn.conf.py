"""Gunicorn production configuration for the verification API."""
import multiprocessing
import os

bind = os.getenv("BIND", "0.0.0.0:8000")
workers = int(os.getenv("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 60
keepalive = 5
max_requests = 1000
max_requests_jitter = 100
preload_app = True
accesslog = "-"
errorlog = "-"
loglevel = "info"


def post_fork(server, worker):
    # The engine is created at import time; forked workers must not share
    # the parent's pooled connections.
    from verifier.db.session import engine
    engine.dispose(close=False)

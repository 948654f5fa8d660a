"""Gunicorn configuration file.

Run with ``gunicorn -c gunicorn.conf.py brewlog.wsgi:app``. WebAuthn
challenges are stored in the database, so any number of workers can serve
the two halves of a ceremony.
"""

import os

# Server socket
bind = os.getenv("GUNICORN_BIND", f"{os.getenv('HOST', '127.0.0.1')}:{os.getenv('PORT', '8000')}")
backlog = 2048

# Worker processes: one request per thread
workers = int(os.getenv("GUNICORN_WORKERS", "2"))
worker_class = "gthread"
threads = int(os.getenv("GUNICORN_THREADS", "4"))
max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "1000"))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", "100"))
timeout = int(os.getenv("GUNICORN_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

reload = os.getenv("FLASK_ENV", "production") == "development"

# Logging
errorlog = os.getenv("GUNICORN_ERROR_LOG", "-")
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")
accesslog = os.getenv("GUNICORN_ACCESS_LOG", "-")
# No query strings: CLI login redirects carry a token in theirs
access_log_format = '%(h)s %(t)s "%(m)s %(U)s" %(s)s %(b)s %(L)s'

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190

# Behind a reverse proxy
forwarded_allow_ips = os.getenv("GUNICORN_FORWARDED_ALLOW_IPS", "127.0.0.1,::1")
secure_scheme_headers = {
    'X-FORWARDED-PROTO': 'https',
}

# Bootstrap runs in create_app; preloading runs it once instead of per worker
preload_app = True


def on_starting(server):
    """Log when the server is starting."""
    server.log.info("brewlog server is starting")


def post_worker_init(worker):
    """Log when a worker is initialized."""
    worker.log.info(f"Worker {worker.pid} initialized")


def post_fork(server, worker):
    """Drop connections inherited from the preloaded master."""
    from brewlog.extensions import db
    from brewlog.wsgi import app

    with app.app_context():
        db.engine.dispose(close=False)

"""Gunicorn production configuration."""
import multiprocessing

wsgi_app = "roster.main:app"
bind = "0.0.0.0:8000"
workers = multiprocessing.cpu_count() + 1
worker_class = "uvicorn.workers.UvicornWorker"
# synchronous bulk imports of up to IMPORT_QUEUE_THRESHOLD rows run inside the request
timeout = 300
graceful_timeout = 60
keepalive = 5
max_requests = 500
max_requests_jitter = 50
preload_app = True
accesslog = "-"
errorlog = "-"
loglevel = "info"

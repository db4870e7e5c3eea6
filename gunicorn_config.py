"""
Gunicorn configuration for ApiProxy production deployment

Run with: gunicorn -c gunicorn_config.py app:app
"""
import multiprocessing
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '5000')}"

# Requests wait on backend apis most of the time: gevent workers keep many of them
# in flight, the adapter's thread pool becomes a pool of greenlets after patching.
worker_class = 'gevent'
workers = int(os.environ.get('GUNICORN_WORKERS', multiprocessing.cpu_count() + 1))
worker_connections = int(os.environ.get('GUNICORN_WORKER_CONNECTIONS', '1000'))

# A worker must outlive the slowest backend call, or gunicorn kills it before the
# adapter can answer 504.
_backend_timeout = float(os.environ.get('API_PROXY_CONNECT_TIMEOUT', '10')) + float(
    os.environ.get('API_PROXY_READ_TIMEOUT', '60')
)
timeout = int(os.environ.get('GUNICORN_TIMEOUT', _backend_timeout + 30))
graceful_timeout = timeout
keepalive = 5

# Logging: access log carries the forwarded-for chain the proxy extends
accesslog = '-'
errorlog = '-'
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
access_log_format = '%(h)s "%({x-forwarded-for}i)s" %(t)s "%(r)s" %(s)s %(b)s %(D)s'

proc_name = 'api-proxy'

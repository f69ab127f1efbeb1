# Gunicorn configuration: gunicorn -c gunicorn.conf.py wsgi:app
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"
workers = int(os.environ.get('WEB_CONCURRENCY', '2'))

# Case uploads are parsed inside the request
timeout = 120

# create_app() runs once in the master process
preload_app = True

accesslog = "-"
errorlog = "-"
loglevel = os.environ.get('LOG_LEVEL', 'INFO').lower()

proc_name = "shakti-crm"

# Gunicorn configuration for noxbackup
# Only one worker owns the scheduler, so cron-triggered backups run once

import os
import logging

logger = logging.getLogger('gunicorn.error')

bind = os.environ.get('GUNICORN_BIND', '0.0.0.0:5000')
workers = int(os.environ.get('GUNICORN_WORKERS', '2'))
wsgi_app = 'noxbackup:create_app()'


def post_fork(server, worker):
    """
    Called in the worker process right after fork, before the app is loaded.

    Designates the first spawned worker (worker.age == 1) as the scheduler
    owner. Only this worker installs cron jobs for backup configurations; the
    others serve the API and can still run manual backups.

    Args:
        server: Gunicorn arbiter
        worker: Gunicorn worker instance (uses 'age' attribute: 1, 2, 3, ...)
    """
    if worker.age == 1:
        os.environ['SCHEDULER_WORKER'] = 'true'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): Designated as SCHEDULER OWNER")
    else:
        os.environ['SCHEDULER_WORKER'] = 'false'
        logger.info(f"Worker PID {worker.pid} (age={worker.age}): Standard HTTP worker (scheduler disabled)")

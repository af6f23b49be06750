"""
Centralized logger factory
One logger per component: HTTP surface, worker pool, scheduler, database
"""
import logging

from jobqueue.core.config import settings
from jobqueue.core.logger import setup_logging

# API Logger - HTTP control surface and CLI
api_logger = setup_logging(
    log_level=settings.LOG_LEVEL,
    log_dir=settings.LOG_DIR,
    app_name='api',
    backup_count=30
)

# Worker Logger - dispatcher, reclaimer and handlers
worker_logger = setup_logging(
    log_level=settings.LOG_LEVEL,
    log_dir=settings.LOG_DIR,
    app_name='worker',
    backup_count=30
)

# Scheduler Logger - recurring job creation
scheduler_logger = setup_logging(
    log_level=settings.LOG_LEVEL,
    log_dir=settings.LOG_DIR,
    app_name='scheduler',
    backup_count=30
)

# Database Logger - store errors only
db_logger = setup_logging(
    log_level=logging.WARNING,
    log_dir=settings.LOG_DIR,
    app_name='db',
    backup_count=30
)

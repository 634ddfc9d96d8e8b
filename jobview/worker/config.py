### jobview/worker/config.py

"""
Celery configuration settings

- Broker and result backend settings
- Task serialization settings
- Timezone configuration
- Beat schedule for periodic tasks
"""

# Third party imports
from celery.schedules import schedule

# Local imports
from jobview.core.config import settings

# Broker and result backend configurations
broker_url = settings.celery_broker
result_backend = settings.celery_backend

# Task serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"
timezone = "UTC"
enable_utc = True

# Task settings
task_track_started = True
task_time_limit = 30 * 60  # 30 minutes
task_soft_time_limit = 25 * 60  # 25 minutes
worker_prefetch_multiplier = 1
task_acks_late = True

# Redis connection settings
broker_connection_retry_on_startup = True
broker_connection_retry = True
broker_connection_max_retries = 10

redis_max_connections = 20
redis_socket_timeout = 10
redis_socket_connect_timeout = 10
redis_retry_on_timeout = True
redis_health_check_interval = 30

broker_transport_options = {
    "max_connections": 20,
    "socket_timeout": 10,
    "socket_connect_timeout": 10,
    "socket_keepalive": True,
    "retry_on_timeout": True,
    "health_check_interval": 30,
}

# Beat schedule configuration
beat_schedule = {
    # --- Export retention: purge expired files, old records, stalled tasks ---
    "export-retention-sweep": {
        "task": "exports.run_retention_sweep",
        "schedule": schedule(run_every=settings.export_sweep_interval_minutes * 60),
    },
}

# Worker configuration
worker_hijack_root_logger = False
worker_log_color = False

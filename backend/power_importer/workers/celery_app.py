"""Celery application for background import runs."""

import ssl

from celery import Celery

from power_importer.core.config import get_settings

settings = get_settings()

IMPORT_TASK_NAME = "power_importer.workers.tasks.import_products"
SSL_OPTIONS = {"ssl_cert_reqs": ssl.CERT_NONE}


def _with_ssl(url: str) -> tuple[str, bool]:
    """Switch Upstash URLs to rediss:// and add ssl_cert_reqs for the Redis backend."""
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)
    if not url.startswith("rediss://"):
        return url, False
    if "ssl_cert_reqs" not in url:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}ssl_cert_reqs=none"
    return url, True


broker_url, broker_ssl = _with_ssl(settings.broker_url)
backend_url, backend_ssl = _with_ssl(settings.result_backend_url)
is_ssl = broker_ssl or backend_ssl

celery_app = Celery("power_importer", broker=broker_url, backend=backend_url)

# SSL options must be in place before anything touches the result backend
if is_ssl:
    celery_app.conf.update(
        {
            "broker_use_ssl": SSL_OPTIONS,
            "result_backend_use_ssl": SSL_OPTIONS,
            "broker_transport_options": dict(SSL_OPTIONS),
            "result_backend_transport_options": dict(SSL_OPTIONS),
        }
    )

celery_app.conf.task_routes = {IMPORT_TASK_NAME: {"queue": "imports"}}
celery_app.conf.task_default_queue = "imports"

celery_app.conf.update(
    {
        "task_serializer": "json",
        "accept_content": ["json"],
        "result_serializer": "json",
        "timezone": "UTC",
        "enable_utc": True,
        # A redelivered run finds the job no longer queued and exits
        "task_acks_late": True,
        "task_reject_on_worker_lost": True,
        "worker_prefetch_multiplier": 1,
        "task_time_limit": settings.background_time_limit,
        "task_soft_time_limit": settings.background_soft_time_limit,
        "result_expires": 3600,
        "broker_connection_retry_on_startup": True,
        "worker_hijack_root_logger": False,
        "result_backend_always_retry": True,
        "result_backend_max_retries": 3,
    }
)

# Register tasks with this app
from power_importer.workers.tasks import import_products  # noqa: E402,F401

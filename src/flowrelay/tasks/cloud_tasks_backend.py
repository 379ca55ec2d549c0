"""Cloud Tasks backend for GCP deployment.

Retry behaviour lives on the queue, not on individual tasks. Provision the
delivery queue with the service's policy, e.g.:

    gcloud tasks queues update flowrelay-delivery \
        --max-attempts=5 --min-backoff=2s --max-doublings=16

The worker additionally stops retrying after DELIVERY_MAX_ATTEMPTS using the
X-CloudTasks-TaskRetryCount header.
"""
import json
import os

from google.api_core.exceptions import AlreadyExists
from google.cloud import tasks_v2

from flowrelay.observability.logging import get_logger

logger = get_logger(__name__)


def enqueue_cloud_task(
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
) -> bool:
    """Enqueue task via Google Cloud Tasks.

    The task is named after task_id so Cloud Tasks rejects duplicates.

    Returns:
        True if the task was created or already existed.

    Raises:
        RuntimeError: If required env vars not set.
        google.api_core.exceptions.GoogleAPICallError: On other API failures.
    """
    project = os.environ.get("GOOGLE_CLOUD_PROJECT") or os.environ.get("GCP_PROJECT_ID")
    location = os.environ.get("GCP_LOCATION", "us-central1")
    queue = os.environ.get("GCP_TASKS_QUEUE", "flowrelay-delivery")
    worker_url = os.environ.get("WORKER_BASE_URL")
    oidc_service_account = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    oidc_audience = os.environ.get("TASKS_OIDC_AUDIENCE")

    if not project:
        raise RuntimeError("GOOGLE_CLOUD_PROJECT or GCP_PROJECT_ID required")
    if not worker_url:
        raise RuntimeError("WORKER_BASE_URL required for Cloud Tasks")
    if not oidc_service_account:
        raise RuntimeError("TASKS_OIDC_SERVICE_ACCOUNT required for Cloud Tasks")
    if not oidc_audience:
        raise RuntimeError("TASKS_OIDC_AUDIENCE required for Cloud Tasks")

    client = tasks_v2.CloudTasksClient()
    parent = client.queue_path(project, location, queue)

    headers = {"Content-Type": "application/json"}
    if correlation_id:
        headers["X-Correlation-ID"] = correlation_id

    safe_task_id = task_id.replace(":", "-").replace("/", "-")
    task = {
        "name": f"{parent}/tasks/{safe_task_id}",
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": f"{worker_url.rstrip('/')}{url_path}",
            "headers": headers,
            "body": json.dumps(payload).encode(),
            "oidc_token": {
                "service_account_email": oidc_service_account,
                "audience": oidc_audience,
            },
        },
    }

    try:
        response = client.create_task(parent=parent, task=task)
    except AlreadyExists:
        logger.info(
            "cloud task already exists (dedupe)",
            extra={"extra_fields": {"task_id": task_id, "correlationId": correlation_id}},
        )
        return True

    logger.info(
        "cloud task enqueued",
        extra={
            "extra_fields": {
                "task_name": response.name,
                "url_path": url_path,
                "correlationId": correlation_id,
            }
        },
    )
    return True

"""Request dependencies for process-wide collaborators.

The factory builds the tasks client, sender and settings once and stores them
on app.state; routes receive them through these functions so tests can swap
them via app.dependency_overrides.
"""

from fastapi import Request

from flowrelay.config import Settings
from flowrelay.tasks.client import TasksClient
from flowrelay.tasks.contracts import RetryPolicy, retry_policy_from_settings
from flowrelay.whatsapp.meta_sender import MetaSender


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_tasks_client(request: Request) -> TasksClient:
    return request.app.state.tasks_client


def get_sender(request: Request) -> MetaSender:
    return request.app.state.sender


def get_retry_policy(request: Request) -> RetryPolicy:
    return retry_policy_from_settings(request.app.state.settings)

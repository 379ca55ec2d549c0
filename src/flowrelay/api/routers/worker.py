"""Worker routes (APP_ROLE=worker)."""

from fastapi import APIRouter

router = APIRouter()


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Delivery worker health check."""
    return {"status": "ok", "subsystem": "tasks"}

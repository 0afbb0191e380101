"""Unauthenticated routes."""

from fastapi import APIRouter

router = APIRouter(tags=["public"])


@router.get("/health")
def health() -> dict:
    """Liveness check."""
    return {"status": "ok"}

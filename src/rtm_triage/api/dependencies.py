"""Dependency injection for FastAPI routes."""

from fastapi import Depends, HTTPException, Request

from rtm_triage.app_initializer import TriageApplication
from rtm_triage.core.engine import TriageEngine


def get_triage_app(request: Request) -> TriageApplication:
    """Get the RTM-Triage application instance.

    Args:
        request: FastAPI request object

    Returns:
        Application instance from app state
    """
    return request.app.state.triage_app


def get_engine(triage_app: TriageApplication = Depends(get_triage_app)) -> TriageEngine:
    """Get the triage engine, or 503 while the application is starting."""
    if triage_app.engine is None:
        raise HTTPException(status_code=503, detail="Triage engine not initialized")
    return triage_app.engine

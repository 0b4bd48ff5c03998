"""Dependency injection module for FastAPI.

This module provides dependency injection functions for FastAPI routes,
following Google Python Style Guide and FastAPI best practices.
"""

from typing import Annotated, Optional

from fastapi import Depends

from utils import session_manager

# Singleton for the process-wide gradebook session
_session_instance: Optional[session_manager.GradebookSession] = None


def get_gradebook_session() -> session_manager.GradebookSession:
    """Get GradebookSession singleton instance.

    Returns:
        GradebookSession instance (singleton).
    """
    global _session_instance
    if _session_instance is None:
        _session_instance = session_manager.create_session()
    return _session_instance


def reset_gradebook_session() -> None:
    """Forget the singleton so the next request builds a fresh session."""
    global _session_instance
    _session_instance = None


# Type aliases for dependency injection
GradebookSessionDep = Annotated[
    session_manager.GradebookSession, Depends(get_gradebook_session)
]

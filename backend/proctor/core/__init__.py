"""
Core module for application configuration and domain logic.

The state-machine modules (session_window, participant_status,
attempt_progress, scoring, live_aggregation) are not imported at package
level to avoid circular imports with proctor.models. Import them directly.
"""
from .config import settings

__all__ = ["settings"]

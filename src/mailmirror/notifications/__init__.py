"""Event delivery for newly indexed mail."""

from .broadcaster import Event, EventBroadcaster, LocalBroadcaster, NEW_EMAIL_EVENT

__all__ = ["Event", "EventBroadcaster", "LocalBroadcaster", "NEW_EMAIL_EVENT"]

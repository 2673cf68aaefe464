"""
Exception hierarchy for the trust and consensus core.

Only caller-controlled precondition violations raise; malformed data is
normalized or flagged instead.
"""


class OpenReliefError(Exception):
    """Base class for errors raised by the core."""


class InvalidActionKind(OpenReliefError, ValueError):
    """Unknown trust action type or outcome."""

    def __init__(self, kind: str, value: object):
        self.kind = kind
        self.value = value
        super().__init__(f"Unknown {kind}: {value!r}")


class EventNotFound(OpenReliefError, LookupError):
    """Requested emergency event does not exist in the store."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} not found")


class InvalidStatusTransition(OpenReliefError):
    """Requested event status change is not allowed from the current state."""

    def __init__(self, event_id: str, current: str, target: str):
        self.event_id = event_id
        self.current = current
        self.target = target
        super().__init__(
            f"Event {event_id} cannot move from '{current}' to '{target}'"
        )

from __future__ import annotations


class LifeLineError(Exception):
    """Base class for errors the matching core reports to its callers."""


class RequestNotFoundError(LifeLineError):
    def __init__(self, request_id: str) -> None:
        super().__init__(f"Request {request_id} not found")
        self.request_id = request_id


class DonorNotFoundError(LifeLineError):
    def __init__(self, donor_id: str) -> None:
        super().__init__(f"Donor {donor_id} not found")
        self.donor_id = donor_id


class DuplicateResponseError(LifeLineError):
    def __init__(self, request_id: str, donor_id: str) -> None:
        super().__init__("You have already responded to this request")
        self.request_id = request_id
        self.donor_id = donor_id


class RequestNotPendingError(LifeLineError):
    def __init__(self, request_id: str, status: str) -> None:
        super().__init__("This request is no longer active")
        self.request_id = request_id
        self.status = status


class InvalidTransitionError(LifeLineError):
    def __init__(self, current: str | None, target: str) -> None:
        super().__init__(f"Cannot move from {current or 'no response'} to {target}")
        self.current = current
        self.target = target


class NotAuthorizedError(LifeLineError):
    pass


class LocatorUnavailableError(LifeLineError):
    """The donor store could not answer a candidate query; safe to retry."""

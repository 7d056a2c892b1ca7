"""Errors raised by the approval engine.

Callers (HTTP handlers, email links) turn these into user-facing messages;
the engine itself never swallows them.
"""


class ApprovalError(Exception):
    """Base class for everything the engine raises on purpose."""


class ConflictError(ApprovalError):
    """The targeted step or stage was already acted on (or lost a race)."""


class NotFoundError(ApprovalError):
    """Nothing pending matches the request, step or correction."""


class ConfigurationError(ApprovalError):
    """A workflow definition is missing or malformed."""


class UnresolvableApprover(Exception):
    """Internal signal: no concrete approver for a step, so the step is skipped."""

    def __init__(self, approver: str, reason: str):
        self.approver = approver
        self.reason = reason
        super().__init__(f"{approver}: {reason}")

"""
Error taxonomy for the authorization core.

Each error carries the HTTP status class it maps to and a generic public
message. The specific internal reason (e.g. "hospitalId mismatch") goes to the
audit trail and logs, never into the response body.
"""

import uuid


class AuthzError(Exception):
    status_code = 500
    public_message = "An internal server error occurred."

    def __init__(self, reason: str | None = None):
        super().__init__(reason or self.public_message)
        self.reason = reason or self.public_message

    def to_body(self) -> dict:
        return {"message": self.public_message}


class AuthenticationFailure(AuthzError):
    status_code = 401
    public_message = "Not authorized to access this route"


class AccountLocked(AuthzError):
    status_code = 401
    public_message = "Not authorized to access this route"

    def __init__(self, reason: str, principal_id: uuid.UUID | None = None, role: str | None = None):
        super().__init__(reason)
        self.principal_id = principal_id
        self.role = role


class AccessDenied(AuthzError):
    """Policy mismatch. `overridable` marks assignment denials eligible for break-glass."""
    status_code = 403
    public_message = "Forbidden"

    def __init__(self, reason: str, overridable: bool = False, decision_id: uuid.UUID | None = None):
        super().__init__(reason)
        self.overridable = overridable
        self.decision_id = decision_id

    def to_body(self) -> dict:
        body = {"message": self.public_message, "break_glass_available": self.overridable}
        if self.decision_id is not None:
            body["decision_id"] = str(self.decision_id)
        return body


class ConsentMissing(AccessDenied):
    def __init__(self, reason: str, decision_id: uuid.UUID | None = None):
        super().__init__(reason, overridable=False, decision_id=decision_id)


class ValidationError(AuthzError):
    status_code = 400
    public_message = "Bad request"

    def to_body(self) -> dict:
        # validation messages describe the caller's own input, not policy structure
        return {"message": self.reason}


class NotFound(AuthzError):
    status_code = 404
    public_message = "Not found"


class ConcurrentModification(AuthzError):
    status_code = 409
    public_message = "Conflict, please retry"


class AuditWriteFailure(AuthzError):
    status_code = 500
    public_message = "An internal server error occurred."

# votee9ja/errors.py
"""Error taxonomy shared by the storage layer, the services and the HTTP API.

Every failure the service reports to a caller is one of these classes. Each
carries a machine-readable ``reason``, the HTTP ``status_code`` used when it
is rendered by the API, and a ``public_message`` that is safe to show to end
users (it never contains row contents or probing detail).

Exception hierarchy:
- VoteE9jaError: base class, reason ``unknown``
  - ValidationError: client-correctable, field-scoped (``errors`` dict)
    - InvalidTransitionError: election status change not allowed
  - AuthorizationError: request denied, no partial effect
    - UnauthenticatedError: no (valid) identity on the request
    - NotEligibleError: eligibility predicate failed at write time
    - ResultsNotPublishedError: aggregates requested before publication
  - IntegrityViolationError: storage invariant would be broken
    - DuplicateVoteError: (voter, election, position) already has a vote
    - InvalidReferenceError: candidate/position/election do not line up
    - ImmutableRecordError: update/delete attempted on an append-only row
  - NotFoundError
  - TransientError: retryable storage/network failure
  - ConfigurationError: fatal at startup
"""


class VoteE9jaError(Exception):
    reason = "unknown"
    status_code = 500
    public_message = "Something went wrong. Please try again."

    def __init__(self, message=None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def to_dict(self):
        return {"reason": self.reason, "message": self.message}


class ValidationError(VoteE9jaError):
    reason = "validation_error"
    status_code = 400
    public_message = "Some fields are invalid."

    def __init__(self, message=None, errors=None):
        super().__init__(message)
        self.errors = errors or {}

    def to_dict(self):
        payload = super().to_dict()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class InvalidTransitionError(ValidationError):
    reason = "invalid_transition"
    status_code = 409
    public_message = "That status change is not allowed."


class AuthorizationError(VoteE9jaError):
    reason = "forbidden"
    status_code = 403
    public_message = "You are not allowed to perform this action."


class UnauthenticatedError(AuthorizationError):
    reason = "unauthenticated"
    status_code = 401
    public_message = "Please sign in to continue."


class NotEligibleError(AuthorizationError):
    reason = "not_eligible"
    public_message = "You are not eligible to vote in this election."


class ResultsNotPublishedError(AuthorizationError):
    reason = "results_unpublished"
    public_message = "Results for this election have not been published."


class IntegrityViolationError(VoteE9jaError):
    reason = "integrity_violation"
    status_code = 409
    public_message = "The request conflicts with existing records."


class DuplicateVoteError(IntegrityViolationError):
    reason = "duplicate_vote"
    public_message = "You have already voted for this position."


class InvalidReferenceError(IntegrityViolationError):
    reason = "invalid_reference"
    status_code = 422
    public_message = "The selected candidate is not on this ballot."


class ImmutableRecordError(IntegrityViolationError):
    reason = "immutable_record"
    public_message = "Recorded entries cannot be changed or removed."


class NotFoundError(VoteE9jaError):
    reason = "not_found"
    status_code = 404
    public_message = "The requested record was not found."


class TransientError(VoteE9jaError):
    reason = "unknown"
    status_code = 503
    public_message = "The service is temporarily unavailable. Please try again."


class ConfigurationError(VoteE9jaError):
    reason = "configuration_error"
    public_message = "The service is not configured."

"""Exceptions raised by the identity core."""


class ValidationError(RuntimeError):
    """Input has the wrong shape, e.g. a missing name or an unknown role."""


class WeakCredentialError(ValidationError):
    """Password is shorter than the minimum length."""

    def __init__(self, min_length: int) -> None:
        self.min_length = min_length
        super(WeakCredentialError, self).__init__(
            f'Password too short; needs to be {min_length} characters or'
            ' longer.'
        )


class ConflictError(RuntimeError):
    """The change collides with existing data, e.g. an e-mail is taken."""


class InvariantViolation(RuntimeError):
    """The change would break a structural rule, e.g. remove the last admin."""


class NotFoundError(RuntimeError):
    """A record does not exist, or does not belong to the caller."""


class AuthenticationFailed(RuntimeError):
    """Failed to authenticate user with provided credentials."""


class RateLimited(RuntimeError):
    """The rate limiter denied the attempt."""

    def __init__(self, action: str, ms_before_next: int = 0) -> None:
        self.action = action
        self.ms_before_next = ms_before_next
        super(RateLimited, self).__init__(
            f'Rate limit exceeded for {action}; retry in {ms_before_next} ms'
        )


class Unavailable(RuntimeError):
    """A backing service (database, limiter) is temporarily unavailable."""

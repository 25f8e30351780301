"""Error taxonomy shared by the workflow modules.

Core modules raise these; the Cloud Function layer in main.py turns them into
the usual {'success': False, 'message': ..., 'data': None} response with an
'error' code the front end uses to pick a sign-in prompt, a retry affordance
or an empty state.
"""
from typing import Optional

from google.api_core import exceptions as google_exceptions


class StoryInColorError(Exception):
    """Base class for every error surfaced by the workflows."""

    code = 'internal'

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class AuthError(StoryInColorError):
    """Unauthenticated or unauthorized request."""

    code = 'unauthenticated'

    def __init__(self, reason: str, message: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message or f'Authentication failed: {reason}', cause)
        self.reason = reason


class NotFoundError(StoryInColorError):
    code = 'not-found'


class StoreError(StoryInColorError):
    """Document store I/O failure. Never retried by the store itself."""

    code = 'store'


class TransientError(StoryInColorError):
    """Retryable network or permission failure."""

    code = 'transient'


class QuotaError(StoryInColorError):
    """Size or storage limit exceeded even after mitigation."""

    code = 'quota'


class ValidationError(StoryInColorError):
    code = 'invalid'


class IntegrityError(StoryInColorError):
    """An expected association between records was not found."""

    code = 'integrity'


# Status codes that retrying can fix
_TRANSIENT_GOOGLE_ERRORS = (
    google_exceptions.Forbidden,
    google_exceptions.Unauthorized,
    google_exceptions.TooManyRequests,
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
    google_exceptions.GatewayTimeout,
    google_exceptions.DeadlineExceeded,
    google_exceptions.RetryError,
)


def classify_storage_error(error: BaseException, path: str = '') -> StoryInColorError:
    """
    Map a storage client exception onto the error taxonomy.

    Args:
        error: Exception raised by the storage client
        path: Object path involved, used in the message

    Returns:
        StoryInColorError: NotFoundError for a missing object, TransientError otherwise
    """
    if isinstance(error, StoryInColorError):
        return error
    if isinstance(error, google_exceptions.NotFound):
        return NotFoundError(f'Object does not exist: {path}', error)
    if isinstance(error, _TRANSIENT_GOOGLE_ERRORS):
        return TransientError(f'Storage temporarily unavailable for {path}: {error}', error)
    return TransientError(f'Storage operation failed for {path}: {error}', error)

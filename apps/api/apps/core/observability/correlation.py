"""
Request and import-run correlation.

Generates/propagates X-Request-ID for API calls and an import run ID for
every import pipeline run, and exposes both to the logging filter.
"""
import uuid
import time
import logging
from contextlib import contextmanager
from threading import local
from django.utils.deprecation import MiddlewareMixin

# Thread-local storage for request / run context
_request_context = local()

logger = logging.getLogger(__name__)


def get_request_id():
    """Get current request ID from thread-local storage."""
    return getattr(_request_context, 'request_id', None)


def get_import_run_id():
    """Get current import run ID from thread-local storage."""
    return getattr(_request_context, 'import_run_id', None)


def get_user_id():
    """Get current user ID from thread-local storage."""
    return getattr(_request_context, 'user_id', None)


@contextmanager
def import_run_context(run_id=None):
    """
    Bind an import run ID to the current thread for the duration of a run.

    Usage:
        with import_run_context() as run_id:
            ...
    """
    run_id = run_id or str(uuid.uuid4())
    previous = get_import_run_id()
    _request_context.import_run_id = run_id
    try:
        yield run_id
    finally:
        _request_context.import_run_id = previous


class RequestCorrelationMiddleware(MiddlewareMixin):
    """
    Middleware to handle request correlation.

    - Generates/propagates X-Request-ID
    - Stores context in thread-local for logging
    - Adds correlation header to response
    - Tracks request duration
    """

    REQUEST_ID_HEADER = 'HTTP_X_REQUEST_ID'

    def process_request(self, request):
        """Process incoming request and setup correlation context."""
        request_id = request.META.get(self.REQUEST_ID_HEADER)
        if not request_id:
            request_id = str(uuid.uuid4())

        request.request_id = request_id
        request.start_time = time.time()

        _request_context.request_id = request_id

        # Extract user context (populated after auth middleware)
        if hasattr(request, 'user') and request.user.is_authenticated:
            _request_context.user_id = str(request.user.id)
        else:
            _request_context.user_id = None

    def process_response(self, request, response):
        """Add correlation header to response."""
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id

        if hasattr(request, 'start_time'):
            duration_ms = (time.time() - request.start_time) * 1000

            logger.info(
                'Request completed',
                extra={
                    'event': 'http_request_completed',
                    'path': request.path,
                    'method': request.method,
                    'status_code': response.status_code,
                    'duration_ms': round(duration_ms, 2),
                }
            )

        return response

    def process_exception(self, request, exception):
        """Log exceptions with correlation context."""
        duration_ms = 0
        if hasattr(request, 'start_time'):
            duration_ms = (time.time() - request.start_time) * 1000

        logger.error(
            f'Request failed: {exception.__class__.__name__}',
            exc_info=True,
            extra={
                'event': 'http_request_exception',
                'path': request.path,
                'method': request.method,
                'exception_type': exception.__class__.__name__,
                'duration_ms': round(duration_ms, 2),
            }
        )


def clear_request_context():
    """Clear thread-local request context (useful for testing)."""
    for attr in ['request_id', 'import_run_id', 'user_id']:
        if hasattr(_request_context, attr):
            delattr(_request_context, attr)

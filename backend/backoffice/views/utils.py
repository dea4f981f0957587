"""Utility helpers shared across API view modules."""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler, set_rollback

from ..exceptions import BackOfficeError, ConsistencyError, InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateError, status.HTTP_400_BAD_REQUEST),
    (ConsistencyError, status.HTTP_409_CONFLICT),
)


def service_exception_handler(exc, context):
    """Translate service errors into API responses.

    Registered as ``REST_FRAMEWORK['EXCEPTION_HANDLER']``; anything that is
    not a service error falls through to DRF's default handling.
    """

    if not isinstance(exc, BackOfficeError):
        return exception_handler(exc, context)

    for error_class, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            break
    else:
        status_code = status.HTTP_400_BAD_REQUEST

    data = {'detail': str(exc)}
    if isinstance(exc, ConsistencyError):
        logger.warning('Consistency check failed: %s', exc)
        data['findings'] = exc.findings

    set_rollback()
    return Response(data, status=status_code)

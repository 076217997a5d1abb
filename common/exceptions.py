# common/exceptions.py
import logging

from django.core.exceptions import PermissionDenied
from django.db import DatabaseError, IntegrityError
from django.http import Http404
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class CRMError(Exception):
    """
    Base for all domain errors raised by services.
    `kind` is the stable machine-readable code returned to clients.
    """
    kind = "error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Something went wrong."

    def __init__(self, detail=None, **extra):
        self.detail = detail or self.default_detail
        self.extra = extra
        super().__init__(self.detail)

    def as_payload(self):
        payload = {"kind": self.kind, "detail": self.detail}
        payload.update(self.extra)
        return payload


class ValidationError(CRMError):
    kind = "validation"
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Invalid input."


class NotFoundError(CRMError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found."


class ConflictError(CRMError):
    """
    Invalid state transition. Always reports the state the entity is actually in,
    so the caller can refresh instead of retrying blindly.
    """
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, detail=None, *, attempted=None, current_status=None, **extra):
        self.attempted = attempted
        self.current_status = current_status
        if detail is None:
            detail = f"Cannot {attempted}: current status is '{current_status}'."
        super().__init__(detail, attempted=attempted, current_status=current_status, **extra)


class PersistenceError(CRMError):
    kind = "persistence"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "The data store could not complete the operation."


def custom_exception_handler(exc, context):
    if isinstance(exc, CRMError):
        if isinstance(exc, ConflictError):
            logger.warning("Conflict: %s", exc.detail)
        elif isinstance(exc, PersistenceError):
            logger.error("Persistence failure: %s", exc.detail)
        return Response(exc.as_payload(), status=exc.status_code)

    response = exception_handler(exc, context)

    if response is not None:
        detail = response.data.get("detail") if isinstance(response.data, dict) else None
        if isinstance(exc, drf_exceptions.ValidationError):
            response.data = {
                "kind": ValidationError.kind,
                "detail": "Invalid data",
                "errors": response.data,
            }
        elif isinstance(exc, (Http404, drf_exceptions.NotFound)):
            response.data = {"kind": NotFoundError.kind, "detail": str(detail or NotFoundError.default_detail)}
        elif isinstance(exc, (PermissionDenied, drf_exceptions.PermissionDenied)):
            response.data = {"kind": "forbidden", "detail": str(detail)}
        elif isinstance(exc, (drf_exceptions.NotAuthenticated, drf_exceptions.AuthenticationFailed)):
            response.data = {"kind": "unauthorized", "detail": str(detail)}
        return response

    if isinstance(exc, IntegrityError):
        return Response(
            {"kind": ValidationError.kind, "detail": "Database integrity error: " + str(exc)},
            status=status.HTTP_400_BAD_REQUEST,
        )

    if isinstance(exc, DatabaseError):
        logger.exception("Database error while handling %s", context.get("view"))
        return Response(
            {"kind": PersistenceError.kind, "detail": PersistenceError.default_detail},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    logger.exception("Unhandled error while handling %s", context.get("view"))
    return Response(
        {"kind": "internal", "detail": "Unexpected server error."},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )

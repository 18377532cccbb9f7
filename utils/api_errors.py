from rest_framework import status
from rest_framework.response import Response

from utils.exceptions import ErrorCodes
from utils.service_base import ServiceResult

ERROR_STATUS = {
    ErrorCodes.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCodes.INVALID_TRANSITION: status.HTTP_400_BAD_REQUEST,
    ErrorCodes.PRECONDITION_FAILED: status.HTTP_400_BAD_REQUEST,
    ErrorCodes.AMOUNT_MISMATCH: status.HTTP_400_BAD_REQUEST,
    ErrorCodes.PERMISSION_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorCodes.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCodes.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCodes.EXTERNAL_SERVICE_ERROR: status.HTTP_502_BAD_GATEWAY,
}


def error_response(result: ServiceResult) -> Response:
    """Map a failed ServiceResult onto a DRF Response."""
    http_status = ERROR_STATUS.get(result.error, status.HTTP_500_INTERNAL_SERVER_ERROR)
    body = {"error": result.error, "detail": result.error_detail}
    if result.errors:
        body["errors"] = result.errors
    return Response(body, status=http_status)


def validation_error_response(serializer_errors) -> Response:
    """Request serializer failures share the service error envelope."""
    errors = [f"{field}: {' '.join(str(m) for m in messages)}" for field, messages in serializer_errors.items()]
    return Response(
        {"error": ErrorCodes.VALIDATION_ERROR, "detail": "Invalid request data", "errors": errors},
        status=status.HTTP_400_BAD_REQUEST,
    )


def query_int(request, name: str, default: int) -> int:
    """Integer query parameter; malformed values fall back to ``default``."""
    try:
        return int(request.query_params.get(name, default))
    except (TypeError, ValueError):
        return default

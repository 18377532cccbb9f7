"""
Payout account views.

A store's payout account holds the gateway recipient code escrow releases
are transferred to. Only the store owner (or an admin) can see or change it.
"""

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from infrastructure.container import container
from payment_system.api.serializers.payment_serializers import PayoutAccountSerializer
from payment_system.api.serializers.request_serializers import PayoutAccountRequestSerializer
from payment_system.api.serializers.response_serializers import ErrorResponseSerializer
from payment_system.security import PaymentAuditLogger, get_client_ip
from utils.api_errors import error_response, validation_error_response

logger = logging.getLogger(__name__)


@extend_schema(
    methods=["GET"],
    operation_id="payout_account_retrieve",
    summary="Get a store's payout account",
    responses={
        200: OpenApiResponse(response=PayoutAccountSerializer, description="Payout account retrieved"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not the store owner"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Store or payout account not found"),
    },
    tags=["Payout Accounts"],
)
@extend_schema(
    methods=["PUT"],
    operation_id="payout_account_upsert",
    summary="Create or replace a store's payout account",
    description="""
    **What it receives:**
    - `recipient_code`: transfer recipient code registered with the payment gateway
    - `bank_name`, `account_name`, `account_number` (optional, only the last digits are kept)
    - `is_active` (default true): inactive accounts block escrow releases

    **What it returns:**
    - The stored payout account with a masked account number
    """,
    request=PayoutAccountRequestSerializer,
    responses={
        200: OpenApiResponse(response=PayoutAccountSerializer, description="Payout account saved"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Invalid data"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not the store owner"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Store not found"),
    },
    tags=["Payout Accounts"],
)
@api_view(["GET", "PUT"])
@permission_classes([IsAuthenticated])
def store_payout_account(request, store_id):
    service = container.payout_account_service()

    if request.method == "GET":
        result = service.get_store_payout_account(request.user, store_id)
        if not result.ok:
            return error_response(result)
        return Response(PayoutAccountSerializer(result.value).data, status=status.HTTP_200_OK)

    serializer = PayoutAccountRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    result = service.upsert_payout_account(request.user, store_id, **serializer.validated_data)
    if not result.ok:
        return error_response(result)

    PaymentAuditLogger.log_security_event(
        "payout_account_updated",
        get_client_ip(request),
        user_id=str(request.user.pk),
        details=f"Payout account saved for store {store_id}",
    )
    return Response(PayoutAccountSerializer(result.value).data, status=status.HTTP_200_OK)

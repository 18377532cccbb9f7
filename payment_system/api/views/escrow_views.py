"""
Escrow views: buyer confirmation, escrow visibility and the admin reset override.

Scheduled releases run in Celery (payment_system.Tasks.escrow_tasks) and have
no HTTP surface.
"""

import logging
from dataclasses import asdict

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from infrastructure.container import container
from payment_system.api.serializers.payment_serializers import EscrowSerializer
from payment_system.api.serializers.request_serializers import ResetEscrowRequestSerializer
from payment_system.api.serializers.response_serializers import (
    ErrorResponseSerializer,
    EscrowListResponseSerializer,
    OrderEscrowStatusResponseSerializer,
    ReleaseOutcomeResponseSerializer,
)
from payment_system.security import get_client_ip
from utils.api_errors import error_response, query_int, validation_error_response

logger = logging.getLogger(__name__)


@extend_schema(
    operation_id="escrow_confirm_receipt",
    summary="Confirm receipt and release funds",
    description="""
    **What it receives:**
    - `order_id` (UUID in URL): a DELIVERED order of the caller

    **What it returns:**
    - The release outcome. Funds are transferred to the seller and the order becomes COMPLETED.
    - `status: skipped` when a concurrent scheduled release already claimed the escrow
    """,
    request=None,
    responses={
        200: OpenApiResponse(response=ReleaseOutcomeResponseSerializer, description="Escrow released"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Order not delivered, dispute open, or escrow not held"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not the buyer"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
        409: OpenApiResponse(response=ErrorResponseSerializer, description="Release already in progress"),
        502: OpenApiResponse(response=ErrorResponseSerializer, description="Transfer to the seller failed"),
    },
    tags=["Escrow"],
)
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def confirm_receipt(request, order_id):
    logger.info(f"Receipt confirmation for order {order_id} by {request.user.pk} from {get_client_ip(request)}")
    result = container.escrow_service().confirm_receipt(request.user, order_id)
    if not result.ok:
        return error_response(result)
    return Response(ReleaseOutcomeResponseSerializer(asdict(result.value)).data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="escrow_order_status",
    summary="Get escrow status of an order",
    description="Escrow snapshot plus whether the caller can confirm receipt right now.",
    responses={
        200: OpenApiResponse(response=OrderEscrowStatusResponseSerializer, description="Escrow status retrieved"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not a party to the order"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
    },
    tags=["Escrow"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def order_escrow_status(request, order_id):
    result = container.escrow_service().get_order_escrow_status(request.user, order_id)
    if not result.ok:
        return error_response(result)
    return Response(result.value, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="escrow_retrieve",
    summary="Get escrow details",
    responses={
        200: OpenApiResponse(response=EscrowSerializer, description="Escrow retrieved"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not a party to the order"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Escrow not found"),
    },
    tags=["Escrow"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def escrow_detail(request, escrow_id):
    result = container.escrow_service().get_escrow_details(request.user, escrow_id)
    if not result.ok:
        return error_response(result)
    return Response(EscrowSerializer(result.value).data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="escrow_pending_list",
    summary="List escrows by release status (Admin only)",
    parameters=[
        OpenApiParameter(name="status", type=str, description="Release status (default: PENDING)"),
        OpenApiParameter(name="page", type=int, description="Page number (default: 1)"),
        OpenApiParameter(name="page_size", type=int, description="Items per page (default: 20)"),
    ],
    responses={
        200: OpenApiResponse(response=EscrowListResponseSerializer, description="Escrows retrieved"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Admin access required"),
    },
    tags=["Escrow - Admin"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def pending_escrows(request):
    result = container.escrow_service().list_pending_escrows(
        request.user,
        page=query_int(request, "page", 1),
        page_size=query_int(request, "page_size", 20),
        status=request.query_params.get("status"),
    )
    if not result.ok:
        return error_response(result)

    response_data = result.value
    response_data["results"] = EscrowSerializer(response_data["results"], many=True).data
    return Response(response_data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="escrow_reset",
    summary="Reset a failed escrow (Admin only)",
    description="""
    Returns a FAILED escrow to PENDING after the transfer was reconciled with the gateway,
    so the next scheduler pass or buyer confirmation retries the release.
    """,
    request=ResetEscrowRequestSerializer,
    responses={
        200: OpenApiResponse(response=EscrowSerializer, description="Escrow reset"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Escrow is not FAILED"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Admin access required"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Escrow not found"),
    },
    tags=["Escrow - Admin"],
)
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def reset_escrow(request, escrow_id):
    serializer = ResetEscrowRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    result = container.escrow_service().reset_failed_escrow(request.user, escrow_id, serializer.validated_data["reason"])
    if not result.ok:
        return error_response(result)
    return Response(EscrowSerializer(result.value).data, status=status.HTTP_200_OK)

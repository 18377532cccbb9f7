import logging

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from infrastructure.container import container
from payment_system.api.serializers.payment_serializers import DisputeSerializer
from payment_system.api.serializers.request_serializers import (
    CancelDisputeRequestSerializer,
    OpenDisputeRequestSerializer,
    ResolveDisputeRequestSerializer,
    UpdateDisputeRequestSerializer,
)
from payment_system.api.serializers.response_serializers import DisputeListResponseSerializer, ErrorResponseSerializer
from utils.api_errors import error_response, query_int, validation_error_response

logger = logging.getLogger(__name__)

LIST_PARAMETERS = [
    OpenApiParameter(name="status", type=str, description="Filter by dispute status"),
    OpenApiParameter(name="page", type=int, description="Page number (default: 1)"),
    OpenApiParameter(name="page_size", type=int, description="Items per page (default: 20)"),
]


def _paginated(result):
    if not result.ok:
        return error_response(result)
    response_data = result.value
    response_data["results"] = DisputeSerializer(response_data["results"], many=True).data
    return Response(response_data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="dispute_open",
    summary="Open a dispute on an order",
    description="""
    **What it receives:**
    - `order_id` (UUID in URL): a paid order of the caller whose funds are still in escrow
    - `dispute_type`: REFUND_REQUEST, ITEM_NOT_AS_DESCRIBED, ITEM_NOT_RECEIVED, WRONG_ITEM_SENT, DAMAGED_ITEM or OTHER
    - `description`: what went wrong

    **What it returns:**
    - The created dispute. The escrow stays frozen until an administrator resolves it.
    """,
    request=OpenDisputeRequestSerializer,
    responses={
        201: OpenApiResponse(response=DisputeSerializer, description="Dispute opened"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Order not eligible for a dispute"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not the buyer"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
        409: OpenApiResponse(response=ErrorResponseSerializer, description="A dispute already exists"),
    },
    tags=["Disputes"],
)
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def open_dispute(request, order_id):
    serializer = OpenDisputeRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    data = serializer.validated_data
    result = container.dispute_service().open_dispute(
        request.user, order_id, data["description"], dispute_type=data["dispute_type"]
    )
    if not result.ok:
        return error_response(result)
    return Response(DisputeSerializer(result.value).data, status=status.HTTP_201_CREATED)


@extend_schema(
    operation_id="dispute_list",
    summary="List my disputes",
    parameters=LIST_PARAMETERS
    + [OpenApiParameter(name="role", type=str, description="'buyer' or 'seller' (default: both)")],
    responses={200: OpenApiResponse(response=DisputeListResponseSerializer, description="Disputes retrieved")},
    tags=["Disputes"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def list_my_disputes(request):
    result = container.dispute_service().list_user_disputes(
        request.user,
        status=request.query_params.get("status"),
        role=request.query_params.get("role"),
        page=query_int(request, "page", 1),
        page_size=query_int(request, "page_size", 20),
    )
    return _paginated(result)


@extend_schema(
    operation_id="dispute_list_all",
    summary="List all disputes (Admin only)",
    parameters=LIST_PARAMETERS,
    responses={
        200: OpenApiResponse(response=DisputeListResponseSerializer, description="Disputes retrieved"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Admin access required"),
    },
    tags=["Disputes - Admin"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def list_all_disputes(request):
    result = container.dispute_service().list_all_disputes(
        request.user,
        status=request.query_params.get("status"),
        page=query_int(request, "page", 1),
        page_size=query_int(request, "page_size", 20),
    )
    return _paginated(result)


@extend_schema(
    methods=["GET"],
    operation_id="dispute_retrieve",
    summary="Get dispute details",
    responses={
        200: OpenApiResponse(response=DisputeSerializer, description="Dispute retrieved"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not a party to the dispute"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Dispute not found"),
    },
    tags=["Disputes"],
)
@extend_schema(
    methods=["PATCH"],
    operation_id="dispute_update",
    summary="Add information to a pending dispute",
    request=UpdateDisputeRequestSerializer,
    responses={
        200: OpenApiResponse(response=DisputeSerializer, description="Dispute updated"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Dispute is no longer pending"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not a party to the dispute"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Dispute not found"),
    },
    tags=["Disputes"],
)
@api_view(["GET", "PATCH"])
@permission_classes([IsAuthenticated])
def dispute_detail(request, dispute_id):
    service = container.dispute_service()

    if request.method == "PATCH":
        serializer = UpdateDisputeRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)
        result = service.update_dispute(request.user, dispute_id, serializer.validated_data["additional_info"])
    else:
        result = service.get_dispute_details(request.user, dispute_id)

    if not result.ok:
        return error_response(result)
    return Response(DisputeSerializer(result.value).data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="dispute_resolve",
    summary="Resolve a dispute (Admin only)",
    description="""
    **What it receives:**
    - `status`: RESOLVED or CANCELLED
    - `resolution`: outcome recorded on the dispute
    - `refund_amount` (optional): partial refund, defaults to the order total capped by the escrow
    - `refund_buyer` (default true): false resolves in the seller's favour

    **What it returns:**
    - The closed dispute. A buyer-favoured resolution refunds the escrow through the gateway first;
      when funds were already released the dispute is flagged `requires_manual_refund`.
    """,
    request=ResolveDisputeRequestSerializer,
    responses={
        200: OpenApiResponse(response=DisputeSerializer, description="Dispute resolved"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Dispute already closed or invalid data"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Admin access required"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Dispute not found"),
        409: OpenApiResponse(response=ErrorResponseSerializer, description="Escrow is being processed"),
        502: OpenApiResponse(response=ErrorResponseSerializer, description="Refund failed at the payment provider"),
    },
    tags=["Disputes - Admin"],
)
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def resolve_dispute(request, dispute_id):
    serializer = ResolveDisputeRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    data = serializer.validated_data
    result = container.dispute_service().resolve_dispute(
        request.user,
        dispute_id,
        data["status"],
        data["resolution"],
        refund_amount=data.get("refund_amount"),
        refund_buyer=data["refund_buyer"],
    )
    if not result.ok:
        return error_response(result)
    return Response(DisputeSerializer(result.value).data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="dispute_cancel",
    summary="Withdraw a pending dispute",
    request=CancelDisputeRequestSerializer,
    responses={
        200: OpenApiResponse(response=DisputeSerializer, description="Dispute cancelled"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Dispute is no longer pending"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not a party to the dispute"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Dispute not found"),
    },
    tags=["Disputes"],
)
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def cancel_dispute(request, dispute_id):
    serializer = CancelDisputeRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    result = container.dispute_service().cancel_dispute(request.user, dispute_id, serializer.validated_data["reason"])
    if not result.ok:
        return error_response(result)
    return Response(DisputeSerializer(result.value).data, status=status.HTTP_200_OK)

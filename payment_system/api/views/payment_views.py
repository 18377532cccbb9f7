import logging
from dataclasses import asdict

from django.http import JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, OpenApiTypes, extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from infrastructure.container import container
from payment_system.api.serializers.payment_serializers import PaymentSerializer
from payment_system.api.serializers.request_serializers import CheckoutRequestSerializer
from payment_system.api.serializers.response_serializers import (
    CheckoutSessionPaymentsResponseSerializer,
    CheckoutSessionResponseSerializer,
    ErrorResponseSerializer,
    PaymentListResponseSerializer,
    VerifyPaymentResponseSerializer,
    WebhookResponseSerializer,
)
from payment_system.domain.services.webhook_service import WebhookProcessingError
from payment_system.security import PaymentAuditLogger, get_client_ip
from utils.api_errors import error_response, query_int, validation_error_response
from utils.exceptions import ErrorCodes

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("X-Signature", "X-Paystack-Signature")


@method_decorator(csrf_exempt, name="dispatch")
class PaymentWebhookView(View):
    """Gateway charge webhooks - thin router that delegates to WebhookService."""

    @extend_schema(
        operation_id="payment_webhook",
        summary="Payment Gateway Webhook Endpoint",
        description="""
        **What it receives:**
        - Raw gateway event body (`charge.success` / `charge.failed`)
        - `X-Signature` header: HMAC-SHA512 of the body keyed with the gateway secret

        **What it returns:**
        - 200 once the event is applied, recognised as a duplicate, ignored or found malformed
        - 401 for a bad signature
        - 500 when some orders could not be settled (the gateway retries the delivery)
        """,
        request=OpenApiTypes.OBJECT,
        responses={
            200: OpenApiResponse(response=WebhookResponseSerializer, description="Webhook processed"),
            401: OpenApiResponse(description="Invalid signature"),
            500: OpenApiResponse(description="Processing error"),
        },
        tags=["Webhooks"],
        auth=[],
    )
    def post(self, request):
        payload = request.body
        signature = next((request.headers.get(h) for h in SIGNATURE_HEADERS if request.headers.get(h)), None)
        client_ip = get_client_ip(request) or "unknown"

        try:
            result = container.webhook_service().handle(payload, signature, client_ip=client_ip)
        except WebhookProcessingError as e:
            logger.error(f"Webhook {e.reference} partially applied, failed orders: {e.failed_order_ids}")
            return JsonResponse({"received": False, "detail": "Processing error"}, status=500)
        except Exception as e:
            PaymentAuditLogger.log_security_event("webhook_processing_error", client_ip, details=f"Unexpected error: {e}")
            logger.error(f"Unexpected webhook processing error from IP {client_ip}: {e}", exc_info=True)
            return JsonResponse({"received": False, "detail": "Processing error"}, status=500)

        if not result.ok:
            if result.error == ErrorCodes.PERMISSION_DENIED:
                return JsonResponse({"received": False, "detail": result.error_detail}, status=401)
            return JsonResponse({"received": False, "detail": result.error_detail}, status=500)

        outcome = result.value
        logger.info(f"Webhook {outcome.event} ({outcome.reference or '-'}) handled: {outcome.outcome}")
        return JsonResponse({"received": True, "event": outcome.event, "outcome": outcome.outcome}, status=200)


@extend_schema(
    operation_id="payment_checkout_create",
    summary="Create checkout session",
    description="""
    **What it receives:**
    - `order_ids` (list of UUIDs): PENDING orders of the caller, possibly from several stores
    - `email` (optional): payer email, defaults to the account email
    - `callback_url` (optional): gateway redirect target

    **What it returns:**
    - One gateway charge covering all orders, with the authorization URL to redirect the buyer to
    - Orders whose previous payment FAILED are reopened for this attempt
    """,
    request=CheckoutRequestSerializer,
    responses={
        201: OpenApiResponse(response=CheckoutSessionResponseSerializer, description="Checkout session created"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Orders not payable or invalid data"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not the buyer of every order"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
        502: OpenApiResponse(response=ErrorResponseSerializer, description="Payment provider unavailable"),
    },
    tags=["Payments"],
)
@api_view(["POST"])
@permission_classes([IsAuthenticated])
def create_checkout_session(request):
    serializer = CheckoutRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return validation_error_response(serializer.errors)

    data = serializer.validated_data
    result = container.checkout_service().create_checkout(
        request.user,
        data["order_ids"],
        email=data.get("email"),
        callback_url=data.get("callback_url"),
    )
    if not result.ok:
        return error_response(result)

    session = result.value
    body = asdict(session)
    body["order_count"] = session.order_count
    return Response(CheckoutSessionResponseSerializer(body).data, status=status.HTTP_201_CREATED)


@extend_schema(
    operation_id="payment_list",
    summary="List my payments",
    parameters=[
        OpenApiParameter(name="status", type=str, description="Filter by payment status"),
        OpenApiParameter(name="page", type=int, description="Page number (default: 1)"),
        OpenApiParameter(name="page_size", type=int, description="Items per page (default: 20)"),
    ],
    responses={
        200: OpenApiResponse(response=PaymentListResponseSerializer, description="Payments retrieved"),
        400: OpenApiResponse(response=ErrorResponseSerializer, description="Unknown status filter"),
    },
    tags=["Payments"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def list_payments(request):
    result = container.payment_query_service().list_user_payments(
        request.user,
        status=request.query_params.get("status"),
        page=query_int(request, "page", 1),
        page_size=query_int(request, "page_size", 20),
    )
    if not result.ok:
        return error_response(result)

    response_data = result.value
    response_data["results"] = PaymentSerializer(response_data["results"], many=True).data
    return Response(response_data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="payment_retrieve",
    summary="Get payment details",
    description="Visible to the buyer, the seller of the order and administrators.",
    responses={
        200: OpenApiResponse(response=PaymentSerializer, description="Payment retrieved"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not a party to the order"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Payment not found"),
    },
    tags=["Payments"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def payment_detail(request, payment_id):
    result = container.payment_query_service().get_payment_details(request.user, payment_id)
    if not result.ok:
        return error_response(result)
    return Response(PaymentSerializer(result.value).data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="payment_checkout_session_retrieve",
    summary="Get payments of a checkout session",
    description="All payments created by one checkout, with a summary of the session state.",
    responses={
        200: OpenApiResponse(response=CheckoutSessionPaymentsResponseSerializer, description="Session retrieved"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not the session owner"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Checkout session not found"),
    },
    tags=["Payments"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def checkout_session_payments(request, session_id):
    result = container.payment_query_service().get_payments_by_checkout_session(request.user, session_id)
    if not result.ok:
        return error_response(result)
    return Response(CheckoutSessionPaymentsResponseSerializer(result.value).data, status=status.HTTP_200_OK)


@extend_schema(
    operation_id="payment_verify",
    summary="Verify a charge with the gateway",
    description="""
    Read-only lookup of the gateway's view of a charge reference.
    Orders are settled exclusively by the webhook; this endpoint never changes state.
    """,
    responses={
        200: OpenApiResponse(response=VerifyPaymentResponseSerializer, description="Gateway status retrieved"),
        403: OpenApiResponse(response=ErrorResponseSerializer, description="Not a party to the payment"),
        404: OpenApiResponse(response=ErrorResponseSerializer, description="Reference not found"),
        502: OpenApiResponse(response=ErrorResponseSerializer, description="Payment provider unavailable"),
    },
    tags=["Payments"],
)
@api_view(["GET"])
@permission_classes([IsAuthenticated])
def verify_payment(request, reference):
    result = container.payment_query_service().verify_payment(request.user, reference)
    if not result.ok:
        return error_response(result)
    return Response(VerifyPaymentResponseSerializer(result.value).data, status=status.HTTP_200_OK)

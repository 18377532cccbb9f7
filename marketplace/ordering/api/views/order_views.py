import logging

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from infrastructure.cache.invalidation import ORDER_DETAIL_KEY
from infrastructure.container import container
from marketplace.api.serializers import ErrorResponseSerializer
from marketplace.ordering.api.serializers.order_serializers import (
    AssignCourierRequestSerializer,
    CancelOrderRequestSerializer,
    CreateOrderRequestSerializer,
    DeliveryStatusRequestSerializer,
    OrderListResponseSerializer,
    OrderSerializer,
    StatusChangeSerializer,
    UpdateOrderStatusRequestSerializer,
)
from utils.api_errors import error_response, query_int, validation_error_response
from utils.rbac import is_order_buyer, is_order_seller

logger = logging.getLogger(__name__)

LIST_PARAMETERS = [
    OpenApiParameter(name="status", type=str, description="Filter by order status"),
    OpenApiParameter(name="page", type=int, description="Page number (default: 1)"),
    OpenApiParameter(name="page_size", type=int, description="Items per page (default: 20)"),
]


class OrderViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticated]

    def get_service(self):
        return container.order_service()

    def _paginated(self, result):
        if not result.ok:
            return error_response(result)
        response_data = result.value
        response_data["results"] = OrderSerializer(response_data["results"], many=True).data
        return Response(response_data, status=status.HTTP_200_OK)

    def _order_response(self, result, http_status=status.HTTP_200_OK):
        if not result.ok:
            return error_response(result)
        return Response(OrderSerializer(result.value).data, status=http_status)

    @extend_schema(
        operation_id="orders_list",
        summary="List user's orders (as buyer)",
        description="""
        **What it receives:**
        - Authentication token
        - Optional status filter (query param)
        - Pagination parameters (page, page_size)

        **What it returns:**
        - Paginated list of orders where user is the buyer
        - Total count and page information
        """,
        parameters=LIST_PARAMETERS,
        responses={
            200: OpenApiResponse(response=OrderListResponseSerializer, description="Orders retrieved successfully"),
        },
        tags=["Marketplace - Orders"],
    )
    def list(self, request):
        result = self.get_service().list_buyer_orders(
            request.user,
            status=request.query_params.get("status"),
            page=query_int(request, "page", 1),
            page_size=query_int(request, "page_size", 20),
        )
        return self._paginated(result)

    @extend_schema(
        operation_id="orders_seller_list",
        summary="List orders received by my stores",
        description="""
        **What it receives:**
        - Authentication token (store owner)
        - Optional `store_id` to restrict to one store, optional status filter

        **What it returns:**
        - Paginated list of orders placed with the caller's stores
        """,
        parameters=LIST_PARAMETERS + [OpenApiParameter(name="store_id", type=str, description="Restrict to one store")],
        responses={
            200: OpenApiResponse(response=OrderListResponseSerializer, description="Orders retrieved successfully"),
            403: OpenApiResponse(response=ErrorResponseSerializer, description="Not the store owner"),
        },
        tags=["Marketplace - Orders"],
    )
    @action(detail=False, methods=["get"])
    def seller_orders(self, request):
        result = self.get_service().list_store_orders(
            request.user,
            store_id=request.query_params.get("store_id"),
            status=request.query_params.get("status"),
            page=query_int(request, "page", 1),
            page_size=query_int(request, "page_size", 20),
        )
        return self._paginated(result)

    @extend_schema(
        operation_id="orders_retrieve",
        summary="Get order details",
        description="""
        **What it receives:**
        - `order_id` (UUID in URL): Order to retrieve
        - Authentication token (must be order buyer, store owner or admin)

        **What it returns:**
        - Complete order details including items, delivery and payment status
        """,
        responses={
            200: OpenApiResponse(response=OrderSerializer, description="Order retrieved successfully"),
            403: OpenApiResponse(response=ErrorResponseSerializer, description="Not a party to the order"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
        },
        tags=["Marketplace - Orders"],
    )
    def retrieve(self, request, pk=None):
        cache = container.cache()
        cache_key = ORDER_DETAIL_KEY.format(order_id=pk, user_id=request.user.pk)
        cached = cache.get(cache_key)
        if cached is not None:
            return Response(cached, status=status.HTTP_200_OK)

        result = self.get_service().get_order(request.user, pk)
        if not result.ok:
            return error_response(result)

        order = result.value
        data = OrderSerializer(order).data
        # Only buyer and seller keys are invalidated on order changes
        if is_order_buyer(order, request.user) or is_order_seller(order, request.user):
            cache.set(cache_key, data)
        return Response(data, status=status.HTTP_200_OK)

    @extend_schema(
        operation_id="orders_create",
        summary="Create order",
        description="""
        **What it receives:**
        - `store_id`: store every item belongs to
        - `items`: list of `{product_id, quantity}`
        - `delivery_info`: recipient_name, phone, address, city, region (+ optional notes)
        - `delivery_fee`, `tax_amount`, `discount_amount` (optional)
        - `total_amount` (optional): rejected when it disagrees with the computed total

        **What it returns:**
        - Created order with pending payment status
        - Stock is reserved for order items
        """,
        request=CreateOrderRequestSerializer,
        responses={
            201: OpenApiResponse(response=OrderSerializer, description="Order created successfully"),
            400: OpenApiResponse(response=ErrorResponseSerializer, description="Validation error or insufficient stock"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Store not found"),
        },
        tags=["Marketplace - Orders"],
    )
    def create(self, request):
        serializer = CreateOrderRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        data = serializer.validated_data
        result = self.get_service().create_order(
            request.user,
            data["store_id"],
            [dict(item) for item in data["items"]],
            dict(data["delivery_info"]),
            delivery_fee=data["delivery_fee"],
            tax_amount=data["tax_amount"],
            discount_amount=data["discount_amount"],
            currency=data.get("currency"),
            total_amount=data.get("total_amount"),
            buyer_notes=data["buyer_notes"],
        )
        return self._order_response(result, http_status=status.HTTP_201_CREATED)

    @extend_schema(
        operation_id="orders_update_status",
        summary="Update order status (Seller/Admin only)",
        description="""
        **What it receives:**
        - `status`: next fulfillment status
        - `reason` (optional)

        **What it returns:**
        - Updated order. Progressing past CONFIRMED requires a successful payment;
          COMPLETED is set only when escrowed funds are released.
        """,
        request=UpdateOrderStatusRequestSerializer,
        responses={
            200: OpenApiResponse(response=OrderSerializer, description="Status updated"),
            400: OpenApiResponse(response=ErrorResponseSerializer, description="Invalid transition"),
            403: OpenApiResponse(response=ErrorResponseSerializer, description="Permission denied"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
        },
        tags=["Marketplace - Orders"],
    )
    @action(detail=True, methods=["patch"], url_path="status")
    def update_status(self, request, pk=None):
        serializer = UpdateOrderStatusRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        data = serializer.validated_data
        result = self.get_service().update_order_status(request.user, pk, data["status"], data["reason"])
        return self._order_response(result)

    @extend_schema(
        operation_id="orders_cancel",
        summary="Cancel order",
        description="""
        **What it receives:**
        - `order_id` (UUID in URL): Order to cancel
        - `reason` (string, optional): Cancellation reason

        **What it returns:**
        - Updated order with cancelled status
        - Reserved stock is released back to inventory
        - Funds still held in escrow are refunded to the buyer first
        """,
        request=CancelOrderRequestSerializer,
        responses={
            200: OpenApiResponse(response=OrderSerializer, description="Order cancelled successfully"),
            400: OpenApiResponse(response=ErrorResponseSerializer, description="Order cannot be cancelled"),
            403: OpenApiResponse(response=ErrorResponseSerializer, description="Permission denied"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
            409: OpenApiResponse(response=ErrorResponseSerializer, description="Escrow is being processed"),
            502: OpenApiResponse(response=ErrorResponseSerializer, description="Refund failed at the payment provider"),
        },
        tags=["Marketplace - Orders"],
    )
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        serializer = CancelOrderRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        result = self.get_service().cancel_order(request.user, pk, serializer.validated_data["reason"])
        return self._order_response(result)

    @extend_schema(
        operation_id="orders_history",
        summary="Get order status history",
        responses={
            200: OpenApiResponse(response=StatusChangeSerializer(many=True), description="Status history"),
            403: OpenApiResponse(response=ErrorResponseSerializer, description="Not a party to the order"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
        },
        tags=["Marketplace - Orders"],
    )
    @action(detail=True, methods=["get"])
    def history(self, request, pk=None):
        result = self.get_service().get_status_history(request.user, pk)
        if not result.ok:
            return error_response(result)
        return Response(StatusChangeSerializer(result.value, many=True).data, status=status.HTTP_200_OK)

    @extend_schema(
        operation_id="orders_assign_courier",
        summary="Assign a courier (Seller only)",
        description="""
        **What it receives:**
        - `courier_service`, `driver_name` (required)
        - `driver_phone`, `driver_vehicle_number`, `tracking_number` (optional)

        **What it returns:**
        - Updated order, now SHIPPED. The order must be paid and CONFIRMED or PROCESSING.
        """,
        request=AssignCourierRequestSerializer,
        responses={
            200: OpenApiResponse(response=OrderSerializer, description="Courier assigned"),
            400: OpenApiResponse(response=ErrorResponseSerializer, description="Order not ready for shipping"),
            403: OpenApiResponse(response=ErrorResponseSerializer, description="Not the seller"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
            409: OpenApiResponse(response=ErrorResponseSerializer, description="Courier already assigned"),
        },
        tags=["Marketplace - Delivery"],
    )
    @action(detail=True, methods=["post"])
    def assign_courier(self, request, pk=None):
        serializer = AssignCourierRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        result = container.delivery_service().assign_courier(request.user, pk, **serializer.validated_data)
        return self._order_response(result)

    @extend_schema(
        operation_id="orders_delivery_status",
        summary="Update delivery progress (Seller only)",
        description="Moves a shipped order to OUT_FOR_DELIVERY or DELIVERED.",
        request=DeliveryStatusRequestSerializer,
        responses={
            200: OpenApiResponse(response=OrderSerializer, description="Delivery status updated"),
            400: OpenApiResponse(response=ErrorResponseSerializer, description="Invalid transition"),
            403: OpenApiResponse(response=ErrorResponseSerializer, description="Not the seller"),
            404: OpenApiResponse(response=ErrorResponseSerializer, description="Order not found"),
        },
        tags=["Marketplace - Delivery"],
    )
    @action(detail=True, methods=["post"])
    def delivery_status(self, request, pk=None):
        serializer = DeliveryStatusRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return validation_error_response(serializer.errors)

        result = container.delivery_service().set_delivery_status(request.user, pk, serializer.validated_data["status"])
        return self._order_response(result)

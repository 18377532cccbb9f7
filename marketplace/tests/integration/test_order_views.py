from decimal import Decimal

from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from infrastructure.cache.invalidation import ORDER_DETAIL_KEY
from infrastructure.container import container
from marketplace.models import Order, OrderItem, StatusChange
from marketplace.tests.factories import (
    AdminFactory,
    OrderFactory,
    ProductFactory,
    SellerFactory,
    StoreFactory,
    UserFactory,
    create_paid_order,
)


class OrderViewIntegrationTest(TestCase):
    def setUp(self):
        self.client = APIClient()

        self.buyer = UserFactory(username="buyer", email="buyer@example.com")
        self.seller = SellerFactory(username="seller1", email="seller1@example.com")
        self.admin_user = AdminFactory(username="admin", email="admin@example.com")

        self.store = StoreFactory(owner=self.seller)
        self.product1 = ProductFactory(store=self.store, stock_quantity=10, price=Decimal("10.00"))
        self.product2 = ProductFactory(store=self.store, stock_quantity=5, price=Decimal("20.00"))

        self.order_list_url = reverse("marketplace:order-list")

    def _create_payload(self, **overrides):
        payload = {
            "store_id": str(self.store.id),
            "items": [
                {"product_id": str(self.product1.id), "quantity": 2},
                {"product_id": str(self.product2.id), "quantity": 1},
            ],
            "delivery_info": {
                "recipient_name": "Ama Mensah",
                "phone": "+233201234567",
                "address": "12 Oxford Street",
                "city": "Accra",
                "region": "Greater Accra",
            },
            "delivery_fee": "5.00",
            "buyer_notes": "Please deliver fast",
        }
        payload.update(overrides)
        return payload

    def test_create_order_success(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(self.order_list_url, self._create_payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(OrderItem.objects.count(), 2)
        self.assertEqual(response.data["total_amount"], "45.00")
        self.assertEqual(response.data["status"], Order.PENDING)
        self.assertEqual(response.data["delivery"]["city"], "Accra")

        self.product1.refresh_from_db()
        self.product2.refresh_from_db()
        self.assertEqual(self.product1.stock_quantity, 8)
        self.assertEqual(self.product2.stock_quantity, 4)

    def test_create_order_total_mismatch(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(self.order_list_url, self._create_payload(total_amount="1.00"), format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "validation_error")
        self.assertEqual(Order.objects.count(), 0)

    def test_create_order_invalid_request(self):
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(self.order_list_url, self._create_payload(items=[]), format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "validation_error")
        self.assertTrue(any(e.startswith("items:") for e in response.data["errors"]))

    def test_create_order_insufficient_stock(self):
        self.client.force_authenticate(user=self.buyer)
        payload = self._create_payload(items=[{"product_id": str(self.product2.id), "quantity": 6}])

        response = self.client.post(self.order_list_url, payload, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "precondition_failed")

    def test_requires_authentication(self):
        response = self.client.get(self.order_list_url)
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_list_orders(self):
        OrderFactory(buyer=self.buyer, store=self.store)
        OrderFactory(buyer=self.buyer, store=self.store)
        OrderFactory()
        self.client.force_authenticate(user=self.buyer)

        response = self.client.get(self.order_list_url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 2)
        self.assertEqual(len(response.data["results"]), 2)

    def test_seller_orders(self):
        OrderFactory(store=self.store)
        self.client.force_authenticate(user=self.seller)

        response = self.client.get(reverse("marketplace:order-seller-orders"))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 1)

    def test_retrieve_order_is_cached_for_buyer(self):
        order = OrderFactory(buyer=self.buyer, store=self.store)
        self.client.force_authenticate(user=self.buyer)
        url = reverse("marketplace:order-detail", args=[order.id])

        response = self.client.get(url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["id"], str(order.id))
        cache_key = ORDER_DETAIL_KEY.format(order_id=order.id, user_id=self.buyer.pk)
        self.assertIsNotNone(container.cache().get(cache_key))

    def test_retrieve_by_stranger_is_forbidden(self):
        order = OrderFactory(store=self.store)
        self.client.force_authenticate(user=UserFactory())

        response = self.client.get(reverse("marketplace:order-detail", args=[order.id]))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data["error"], "permission_denied")

    def test_retrieve_unknown_order(self):
        self.client.force_authenticate(user=self.buyer)
        response = self.client.get(reverse("marketplace:order-detail", args=["00000000-0000-0000-0000-000000000000"]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_cancel_order(self):
        self.client.force_authenticate(user=self.buyer)
        created = self.client.post(self.order_list_url, self._create_payload(), format="json")
        url = reverse("marketplace:order-cancel", args=[created.data["id"]])

        response = self.client.post(url, {"reason": "Ordered by mistake"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], Order.CANCELLED)
        self.product1.refresh_from_db()
        self.assertEqual(self.product1.stock_quantity, 10)

    def test_update_status_by_seller(self):
        order, _, _ = create_paid_order(store=self.store)
        self.client.force_authenticate(user=self.seller)

        response = self.client.patch(
            reverse("marketplace:order-update-status", args=[order.id]), {"status": Order.PROCESSING}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], Order.PROCESSING)

    def test_update_status_invalid_transition(self):
        order, _, _ = create_paid_order(store=self.store)
        self.client.force_authenticate(user=self.seller)

        response = self.client.patch(
            reverse("marketplace:order-update-status", args=[order.id]), {"status": Order.COMPLETED}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["error"], "invalid_transition")

    def test_history(self):
        self.client.force_authenticate(user=self.buyer)
        created = self.client.post(self.order_list_url, self._create_payload(), format="json")

        response = self.client.get(reverse("marketplace:order-history", args=[created.data["id"]]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertIsNone(response.data[0]["old_status"])
        self.assertEqual(response.data[0]["new_status"], Order.PENDING)

    def test_assign_courier_and_deliver(self):
        order, _, _ = create_paid_order(store=self.store)
        self.client.force_authenticate(user=self.seller)

        response = self.client.post(
            reverse("marketplace:order-assign-courier", args=[order.id]),
            {"courier_service": "Speedaf", "driver_name": "Kofi"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], Order.SHIPPED)
        self.assertEqual(response.data["delivery"]["courier_service"], "Speedaf")

        again = self.client.post(
            reverse("marketplace:order-assign-courier", args=[order.id]),
            {"courier_service": "DHL", "driver_name": "Yaw"},
            format="json",
        )
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)

        for next_status in (Order.OUT_FOR_DELIVERY, Order.DELIVERED):
            response = self.client.post(
                reverse("marketplace:order-delivery-status", args=[order.id]), {"status": next_status}, format="json"
            )
            self.assertEqual(response.status_code, status.HTTP_200_OK)

        self.assertEqual(
            list(StatusChange.objects.filter(order=order).values_list("new_status", flat=True)),
            [Order.SHIPPED, Order.OUT_FOR_DELIVERY, Order.DELIVERED],
        )

    def test_admin_can_view_any_order(self):
        order = OrderFactory(store=self.store)
        self.client.force_authenticate(user=self.admin_user)

        response = self.client.get(reverse("marketplace:order-detail", args=[order.id]))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        cache_key = ORDER_DETAIL_KEY.format(order_id=order.id, user_id=self.admin_user.pk)
        self.assertIsNone(container.cache().get(cache_key))

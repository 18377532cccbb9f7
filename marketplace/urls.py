from django.urls import include, path
from rest_framework.routers import DefaultRouter

from marketplace.ordering.api.views.order_views import OrderViewSet

router = DefaultRouter()
router.register(r"orders", OrderViewSet, basename="order")

app_name = "marketplace"

urlpatterns = [
    path("", include(router.urls)),
]

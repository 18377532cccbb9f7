from django.urls import path

from payment_system.api.views import dispute_views, escrow_views, metrics_views, payment_views, payout_views

app_name = "payment_system"

urlpatterns = [
    # Webhook endpoint
    path("webhook/", payment_views.PaymentWebhookView.as_view(), name="payment_webhook"),
    # Checkout and payments
    path("checkout/", payment_views.create_checkout_session, name="create_checkout_session"),
    path("checkout/<str:session_id>/", payment_views.checkout_session_payments, name="checkout_session_payments"),
    path("verify/<str:reference>/", payment_views.verify_payment, name="verify_payment"),
    path("", payment_views.list_payments, name="list_payments"),
    path("<uuid:payment_id>/", payment_views.payment_detail, name="payment_detail"),
    # Escrow
    path("escrow/pending/", escrow_views.pending_escrows, name="pending_escrows"),
    path("escrow/orders/<uuid:order_id>/", escrow_views.order_escrow_status, name="order_escrow_status"),
    path("escrow/orders/<uuid:order_id>/confirm/", escrow_views.confirm_receipt, name="confirm_receipt"),
    path("escrow/<uuid:escrow_id>/", escrow_views.escrow_detail, name="escrow_detail"),
    path("escrow/<uuid:escrow_id>/reset/", escrow_views.reset_escrow, name="reset_escrow"),
    # Disputes
    path("disputes/", dispute_views.list_my_disputes, name="list_my_disputes"),
    path("disputes/all/", dispute_views.list_all_disputes, name="list_all_disputes"),
    path("disputes/orders/<uuid:order_id>/", dispute_views.open_dispute, name="open_dispute"),
    path("disputes/<uuid:dispute_id>/", dispute_views.dispute_detail, name="dispute_detail"),
    path("disputes/<uuid:dispute_id>/resolve/", dispute_views.resolve_dispute, name="resolve_dispute"),
    path("disputes/<uuid:dispute_id>/cancel/", dispute_views.cancel_dispute, name="cancel_dispute"),
    # Prometheus metrics endpoint
    path("metrics/", metrics_views.prometheus_metrics, name="payment_metrics"),
    # Payout accounts
    path("payout-accounts/stores/<uuid:store_id>/", payout_views.store_payout_account, name="store_payout_account"),
]

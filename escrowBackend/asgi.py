"""
ASGI config for the escrow backend.
"""

import os

from django.core.asgi import get_asgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "escrowBackend.settings")

application = get_asgi_application()

"""
WSGI config for the escrow backend.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "escrowBackend.settings")

application = get_wsgi_application()

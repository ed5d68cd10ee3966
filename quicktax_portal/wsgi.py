"""
WSGI config for the quicktax_portal project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "quicktax_portal.settings")

application = get_wsgi_application()

"""
WSGI config for the todomaster project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'todomaster.settings')

application = get_wsgi_application()

"""
WSGI config for ritta_backend project.

It exposes the WSGI callable as a module-level variable named ``application``.
"""

import os
from pathlib import Path

from django.core.wsgi import get_wsgi_application
from dotenv import load_dotenv

# .env lives in backend/ (Docker) or in the repository root (local dev)
backend_dir = Path(__file__).resolve().parent.parent
if (backend_dir / ".env").exists():
    load_dotenv(backend_dir / ".env")
else:
    load_dotenv(backend_dir.parent / ".env")

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ritta_backend.settings")

application = get_wsgi_application()

"""
API Routes for Shelf Scanner

Route modules:
- scan: Photo upload, session polling, recommendations and feedback
- user: Profile, preferences and reading history
- history: Past scans of the signed-in reader
- auth: Signup and token issuance
"""

from shelfscanner.api.routes.scan import router as scan_router
from shelfscanner.api.routes.user import router as user_router
from shelfscanner.api.routes.history import router as history_router
from shelfscanner.api.routes.auth import router as auth_router

__all__ = [
    "scan_router",
    "user_router",
    "history_router",
    "auth_router",
]

"""API endpoints for Lendflow DSCR verification"""

from .routes import router

__all__ = ["router"]

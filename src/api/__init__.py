"""
API module for the billing service.

Provides the FastAPI application factory and routers.
"""

from api.app import create_app

__all__ = ['create_app']

"""HTTP API for the attendance tracker."""
from .api_server import create_app
__all__ = ['create_app']

"""
Studio Proxy API

FastAPI routes that proxy the generative provider behind Firebase auth.
"""

from .server import create_app, require_principal

__all__ = ["create_app", "require_principal"]

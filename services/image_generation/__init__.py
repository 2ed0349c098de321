"""
Image Generation Service

Synchronous generation, editing and composition of images (plus plain text
generation) through the Gemini API.
"""

from .client import ImageGenerationClient
from .models import GeneratedImage, ImageModel, SafetyLevel, TextGenerationResult

__all__ = [
    "ImageGenerationClient",
    "GeneratedImage",
    "ImageModel",
    "SafetyLevel",
    "TextGenerationResult",
]

"""
Video Generation Service

Boundary services for long-running Veo video jobs:
- GenerationGateway: submit a job, get an operation handle
- OperationPoller: one status query per call
- AssetRetriever: stream the finished video

None of these retry; the studio orchestrator owns the polling loop.
"""

from .client import VeoClient
from .gateway import GenerationGateway
from .models import (
    GenerationRequest,
    OperationHandle,
    OperationState,
    OperationStatus,
    ReferenceImage,
    VideoModel,
)
from .poller import OperationPoller
from .retriever import AssetRetriever, AssetStream

__all__ = [
    "VeoClient",
    "GenerationGateway",
    "GenerationRequest",
    "OperationHandle",
    "OperationState",
    "OperationStatus",
    "ReferenceImage",
    "VideoModel",
    "OperationPoller",
    "AssetRetriever",
    "AssetStream",
]

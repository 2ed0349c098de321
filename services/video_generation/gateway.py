"""
Generation Gateway - submits a video generation job and hands back its handle.

Stateless: one request in, one upstream call, one OperationHandle out.
"""

import json
import logging
from typing import Optional

from core.errors import UpstreamRejected

from .client import VeoClient
from .models import GenerationRequest, OperationHandle

logger = logging.getLogger(__name__)


class GenerationGateway:
    """
    Forwards GenerationRequests to the video provider.

    Usage:
        gateway = GenerationGateway(VeoClient())
        handle = await gateway.submit(
            GenerationRequest(prompt="a cat on a skateboard")
        )
    """

    def __init__(self, client: Optional[VeoClient] = None):
        self.client = client or VeoClient()

    @staticmethod
    def build_payload(request: GenerationRequest) -> tuple[dict, dict]:
        """Provider instance and parameters for a request."""
        instance: dict = {"prompt": request.prompt}
        if request.image is not None:
            instance["image"] = {
                "bytesBase64Encoded": request.image.to_base64(),
                "mimeType": request.image.mime_type,
            }

        parameters: dict = {}
        if request.aspect_ratio:
            parameters["aspectRatio"] = request.aspect_ratio
        if request.negative_prompt and request.model.spec.accepts_negative_prompt:
            parameters["negativePrompt"] = request.negative_prompt

        return instance, parameters

    async def submit(self, request: GenerationRequest) -> OperationHandle:
        """
        Submit a generation job.

        Raises:
            InvalidRequest: prompt empty or image requirements not met
            UpstreamRejected / QuotaExceeded: provider declined
            TransportError: network failure
        """
        request.validate()
        instance, parameters = self.build_payload(request)

        logger.info(
            f"Veo submit: model={request.model.value}, image={request.image is not None}, "
            f"prompt={request.prompt[:50]}..."
        )
        data = await self.client.predict_long_running(request.model.value, instance, parameters)

        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise UpstreamRejected(
                "Provider accepted the request but returned no operation name",
                details=json.dumps(data)[:500],
            )

        logger.info(f"Veo operation started: {name}")
        return OperationHandle(name=name)

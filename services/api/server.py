"""
Studio Proxy Server

FastAPI app exposing the generative provider through thin proxy routes:
- POST /api/veo/generate   - Submit a video generation job (multipart)
- POST /api/veo/operation  - Poll a video operation
- POST /api/veo/download   - Stream a generated video
- POST /api/imagen/generate - Text-to-image with Imagen
- POST /api/gemini/generate - Text-to-image with Gemini
- POST /api/gemini/edit    - Edit / compose images with Gemini (multipart)
- POST /api/text/generate  - Text generation
- GET/DELETE /api/logs     - Event log (json or csv)
- GET /api/models          - Model catalogue
- GET /health              - Health check

Every /api route requires a Firebase bearer token (any token in
development mode).

Usage:
    python -m uvicorn services.api.server:app --host 0.0.0.0 --port 8000

    # Or via main.py
    python main.py server
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from core.config import Config, get_config
from core.errors import InvalidRequest, QuotaExceeded, StudioError
from core.event_log import EventLog, EventLogHandler, LogFilter
from services.auth import FirebaseAuthenticator, Principal
from services.image_generation import GeneratedImage, ImageGenerationClient, ImageModel, SafetyLevel
from services.image_generation.models import IMAGE_MODEL_SPECS
from services.video_generation import (
    AssetRetriever,
    GenerationGateway,
    GenerationRequest,
    OperationHandle,
    OperationPoller,
    ReferenceImage,
    VeoClient,
    VideoModel,
)
from services.video_generation.models import VIDEO_MODEL_SPECS

from .schemas import (
    DownloadRequest,
    GenerateResponse,
    ImageGenerationRequest,
    ImageResponse,
    LogsResponse,
    OperationRequest,
    OperationResponse,
    TextGenerationRequest,
    TextGenerationResponse,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "studio-api"


def create_app(
    config: Optional[Config] = None,
    *,
    gateway: Optional[GenerationGateway] = None,
    poller: Optional[OperationPoller] = None,
    retriever: Optional[AssetRetriever] = None,
    images: Optional[ImageGenerationClient] = None,
    authenticator: Optional[FirebaseAuthenticator] = None,
    event_log: Optional[EventLog] = None,
) -> FastAPI:
    """Build the proxy app. Collaborators default to real provider clients."""
    config = config or get_config()
    event_log = event_log or EventLog(max_entries=config.logging.buffer_size)

    veo_client: Optional[VeoClient] = None
    if gateway is None or poller is None or retriever is None:
        veo_client = VeoClient(config=config)

    log_handler = EventLogHandler(event_log)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        logging.getLogger("services").addHandler(log_handler)
        for issue in config.validate():
            logger.warning(f"Configuration issue: {issue}")
        logger.info("Studio proxy server starting")

        yield

        logger.info("Studio proxy server shutting down")
        if veo_client is not None:
            await veo_client.close()
        logging.getLogger("services").removeHandler(log_handler)

    app = FastAPI(
        title="Generative Media Studio API",
        description="Proxy routes for video, image and text generation",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.event_log = event_log
    app.state.gateway = gateway or GenerationGateway(veo_client)
    app.state.poller = poller or OperationPoller(veo_client)
    app.state.retriever = retriever or AssetRetriever(veo_client)
    app.state.images = images or ImageGenerationClient(config=config)
    app.state.authenticator = authenticator or FirebaseAuthenticator(config=config)

    @app.exception_handler(StudioError)
    async def handle_studio_error(request: Request, exc: StudioError) -> JSONResponse:
        headers = {}
        if isinstance(exc, QuotaExceeded) and exc.retry_after is not None:
            headers["Retry-After"] = str(int(round(exc.retry_after)))
        log = logger.warning if exc.status_code < 500 else logger.error
        log(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
        return JSONResponse(exc.to_payload(), status_code=exc.status_code, headers=headers)

    @app.middleware("http")
    async def record_requests(request: Request, call_next):
        with event_log.api_request(
            SERVICE_NAME,
            request.method,
            request.url.path,
            details={"query": dict(request.query_params)} if request.query_params else None,
        ) as outcome:
            try:
                response = await call_next(request)
            except Exception as e:
                outcome["error"] = e
                raise
            outcome["status_code"] = response.status_code
            return response

    _register_routes(app)
    return app


def require_principal(request: Request) -> Principal:
    """FastAPI dependency: authenticate the caller or raise Unauthenticated."""
    authenticator: FirebaseAuthenticator = request.app.state.authenticator
    return authenticator.authenticate(request.headers.get("authorization"))


async def _read_upload(upload: UploadFile) -> GeneratedImage:
    data = await upload.read()
    return GeneratedImage(data=data, mime_type=upload.content_type or "image/png")


def _register_routes(app: FastAPI):

    @app.get("/health")
    async def health(request: Request):
        config: Config = request.app.state.config
        return {
            "status": "ok",
            "environment": config.server.environment,
            "issues": config.validate(),
        }

    @app.get("/api/models")
    async def list_models(principal: Principal = Depends(require_principal)):
        return {
            "video": [
                {"id": model.value, "label": spec.label, "aspectRatios": list(spec.aspect_ratios),
                 "audio": spec.has_audio, "tier": spec.tier}
                for model, spec in VIDEO_MODEL_SPECS.items()
            ],
            "image": [
                {"id": model.value, "label": spec.label, "backend": spec.backend.value,
                 "editing": spec.supports_editing, "tier": spec.tier, "limit": spec.daily_limit}
                for model, spec in IMAGE_MODEL_SPECS.items()
            ],
        }

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    @app.post("/api/veo/generate", response_model=GenerateResponse)
    async def veo_generate(
        request: Request,
        prompt: str = Form(""),
        model: Optional[str] = Form(None),
        negativePrompt: Optional[str] = Form(None),
        aspectRatio: Optional[str] = Form(None),
        imageFile: Optional[UploadFile] = File(None),
        imageBase64: Optional[str] = Form(None),
        imageMimeType: Optional[str] = Form(None),
        principal: Principal = Depends(require_principal),
    ):
        image = None
        if imageFile is not None and imageFile.filename:
            upload = await _read_upload(imageFile)
            image = ReferenceImage(data=upload.data, mime_type=upload.mime_type)
        elif imageBase64:
            image = ReferenceImage.from_base64(imageBase64, imageMimeType)

        generation = GenerationRequest(
            prompt=prompt,
            model=VideoModel.resolve(model),
            image=image,
            negative_prompt=negativePrompt or None,
            aspect_ratio=aspectRatio or None,
        )
        handle = await request.app.state.gateway.submit(generation)
        return GenerateResponse(name=handle.name)

    @app.post("/api/veo/operation", response_model=OperationResponse, response_model_exclude_none=True)
    async def veo_operation(
        request: Request,
        body: OperationRequest,
        principal: Principal = Depends(require_principal),
    ):
        if not body.name:
            raise InvalidRequest("Missing operation name")

        status = await request.app.state.poller.poll(OperationHandle(name=body.name))
        return OperationResponse(name=body.name, **status.to_dict())

    @app.post("/api/veo/download")
    async def veo_download(
        request: Request,
        body: DownloadRequest,
        principal: Principal = Depends(require_principal),
    ):
        uri = body.resolved_uri
        if not uri:
            raise InvalidRequest("Missing file uri")

        stream = await request.app.state.retriever.open(uri)
        return StreamingResponse(
            stream.iter_bytes(),
            media_type=stream.content_type,
            headers={
                "Content-Disposition": 'inline; filename="veo3_video.mp4"',
                "Cache-Control": "no-store",
            },
        )

    # ------------------------------------------------------------------
    # Images and text
    # ------------------------------------------------------------------

    @app.post("/api/imagen/generate", response_model=ImageResponse)
    async def imagen_generate(
        request: Request,
        body: ImageGenerationRequest,
        principal: Principal = Depends(require_principal),
    ):
        model = ImageModel.resolve(body.model, default=ImageModel.IMAGEN_4_FAST)
        image = await request.app.state.images.generate_image(body.prompt, model, body.aspectRatio)
        return {"image": image.to_payload()}

    @app.post("/api/gemini/generate", response_model=ImageResponse)
    async def gemini_generate(
        request: Request,
        body: ImageGenerationRequest,
        principal: Principal = Depends(require_principal),
    ):
        model = ImageModel.resolve(body.model, default=ImageModel.GEMINI_FLASH_IMAGE_PREVIEW)
        image = await request.app.state.images.generate_image(body.prompt, model)
        return {"image": image.to_payload()}

    @app.post("/api/gemini/edit", response_model=ImageResponse)
    async def gemini_edit(
        request: Request,
        prompt: str = Form(""),
        model: Optional[str] = Form(None),
        imageFiles: Optional[list[UploadFile]] = File(None),
        imageFile: Optional[UploadFile] = File(None),
        imageBase64: Optional[str] = Form(None),
        imageMimeType: Optional[str] = Form(None),
        principal: Principal = Depends(require_principal),
    ):
        images = [await _read_upload(f) for f in imageFiles or [] if f.filename]

        # Single file and base64 only apply when no multi-file upload was sent
        if not images and imageFile is not None and imageFile.filename:
            images.append(await _read_upload(imageFile))
        if not images and imageBase64:
            ref = ReferenceImage.from_base64(imageBase64, imageMimeType)
            images.append(GeneratedImage(data=ref.data, mime_type=ref.mime_type))

        logger.info(f"Gemini edit: {len(images)} image(s) received")
        client: ImageGenerationClient = request.app.state.images
        image_model = ImageModel.resolve(model, default=ImageModel.GEMINI_FLASH_IMAGE_PREVIEW)

        if len(images) > 1:
            image = await client.compose_image(prompt, images, model=image_model)
        else:
            if not images:
                raise InvalidRequest("No images provided for editing")
            image = await client.edit_image(prompt, images[0], model=image_model)
        return {"image": image.to_payload()}

    @app.post("/api/text/generate", response_model=TextGenerationResponse)
    async def text_generate(
        request: Request,
        body: TextGenerationRequest,
        principal: Principal = Depends(require_principal),
    ):
        try:
            safety = SafetyLevel(body.safetyLevel)
        except ValueError:
            raise InvalidRequest(f"Unknown safety level: {body.safetyLevel}")

        result = await request.app.state.images.generate_text(
            body.prompt,
            model=body.model,
            temperature=body.temperature,
            top_p=body.topP,
            max_output_tokens=body.maxOutputTokens,
            safety_level=safety,
        )
        return result.to_payload()

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    @app.get("/api/logs")
    async def get_logs(
        request: Request,
        service: Optional[str] = None,
        level: Optional[str] = None,
        limit: int = 100,
        format: str = "json",
        principal: Principal = Depends(require_principal),
    ):
        event_log: EventLog = request.app.state.event_log
        entries = event_log.query(LogFilter(service=service, level=level, limit=limit))

        if format == "csv":
            stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
            return PlainTextResponse(
                event_log.to_csv(entries),
                media_type="text/csv",
                headers={"Content-Disposition": f'attachment; filename="logs-{stamp}.csv"'},
            )

        return LogsResponse(
            logs=[e.to_dict() for e in entries],
            count=len(entries),
            stats=event_log.stats(),
        )

    @app.delete("/api/logs")
    async def clear_logs(request: Request, principal: Principal = Depends(require_principal)):
        request.app.state.event_log.clear()
        return {"message": "Logs cleared successfully"}


def _build_default_app() -> FastAPI:
    return create_app()


app = _build_default_app()

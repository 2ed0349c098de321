#!/usr/bin/env python3
"""
Generative Media Studio - Main Entry Point

Runs the proxy server, or drives the generation workflow from the terminal.

Usage:
    # Start the proxy server
    python main.py server

    # Generate a video (in-process, straight to the provider)
    python main.py generate --prompt "a cat on a skateboard"

    # Generate through a running proxy and trim the result
    python main.py generate --prompt "a cat on a skateboard" \\
        --server http://localhost:8000 --token dev-token --trim 1.0 4.0

    # Images and text
    python main.py image --prompt "a lighthouse at dusk"
    python main.py text --prompt "Write a haiku about rain"

    # Show the proxy event log
    python main.py logs --server http://localhost:8000 --level error
"""

import argparse
import asyncio
import logging
import mimetypes
import re
import sys
from pathlib import Path
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("studio")


def start_server(host: str, port: int, reload: bool = False):
    """Start the proxy API server."""
    import uvicorn

    logger.info(f"Studio proxy server running at http://{host}:{port}")
    uvicorn.run("services.api.server:app", host=host, port=port, reload=reload)


def _read_image(path: str):
    from services.image_generation import GeneratedImage

    file_path = Path(path)
    mime_type = mimetypes.guess_type(file_path.name)[0] or "image/png"
    return GeneratedImage(data=file_path.read_bytes(), mime_type=mime_type)


async def generate_video(
    prompt: str,
    model: Optional[str] = None,
    image_path: Optional[str] = None,
    negative_prompt: Optional[str] = None,
    aspect_ratio: Optional[str] = None,
    trim: Optional[tuple[float, float]] = None,
    output_dir: str = "./output",
    server_url: Optional[str] = None,
    token: Optional[str] = None,
) -> Optional[Path]:
    """
    Run one generation workflow and save the active asset.

    Args:
        prompt: Text prompt
        model: Video model id (defaults to the configured model)
        image_path: Optional reference image
        negative_prompt: Things to avoid
        aspect_ratio: "16:9" or "9:16"
        trim: Optional (start, end) seconds to capture from the result
        output_dir: Directory for the downloaded file
        server_url: Proxy server; None talks to the provider directly
        token: Bearer token for the proxy server
    """
    from cli.progress_monitor import ProgressMonitor
    from core.config import get_config
    from services.studio import (
        FFmpegCaptureBackend,
        GenerationOrchestrator,
        HandleRegistry,
        MediaPostProcessor,
        StudioApiClient,
        TrimRange,
        WorkflowState,
    )
    from services.video_generation import (
        AssetRetriever,
        GenerationGateway,
        GenerationRequest,
        OperationPoller,
        ReferenceImage,
        VeoClient,
        VideoModel,
    )

    config = get_config()

    image = None
    if image_path:
        upload = _read_image(image_path)
        image = ReferenceImage(data=upload.data, mime_type=upload.mime_type)

    request = GenerationRequest(
        prompt=prompt,
        model=VideoModel.resolve(model or config.models.default_video),
        image=image,
        negative_prompt=negative_prompt,
        aspect_ratio=aspect_ratio,
    )

    if server_url:
        transport = StudioApiClient(server_url, token=token)
        gateway = poller = retriever = transport
    else:
        transport = VeoClient(config=config)
        gateway = GenerationGateway(transport)
        poller = OperationPoller(transport)
        retriever = AssetRetriever(transport)

    backend = FFmpegCaptureBackend(config.media.ffmpeg_path, cluster_ms=config.media.capture_flush_ms)
    orchestrator = GenerationOrchestrator(
        gateway,
        poller,
        retriever,
        handles=HandleRegistry(config.media.handle_dir),
        post_processor=MediaPostProcessor(backend, flush_interval=config.media.capture_flush_ms / 1000),
        poll_interval=config.polling.interval_seconds,
        max_poll_attempts=config.polling.max_attempts,
        on_change=ProgressMonitor(),
    )

    try:
        if not orchestrator.start(request):
            logger.error("Nothing to generate: a prompt is required")
            return None

        snapshot = await orchestrator.wait()
        if snapshot.state != WorkflowState.READY:
            return None

        if trim:
            trimmed = await orchestrator.trim(TrimRange(*trim))
            if not trimmed:
                logger.warning("No trimmed clip produced, saving the original video")

        filename, data, _ = orchestrator.download()
        output = Path(output_dir)
        output.mkdir(parents=True, exist_ok=True)
        target = output / filename
        target.write_bytes(data)
        logger.info(f"Saved {target} ({len(data) / 1024 / 1024:.1f} MB)")
        return target

    finally:
        await orchestrator.aclose()
        await transport.close()


def _image_filename(model: str, mime_type: str) -> str:
    safe_model = re.sub(r"[^a-zA-Z0-9-]", "_", model)
    extension = mime_type.split("/")[-1] or "png"
    return f"{safe_model}.{extension}"


async def generate_image(
    prompt: str,
    model: Optional[str] = None,
    edit_paths: Optional[list[str]] = None,
    aspect_ratio: str = "16:9",
    output_dir: str = "./output",
    server_url: Optional[str] = None,
    token: Optional[str] = None,
) -> Path:
    """Generate, edit (one image) or compose (several images) and save the result."""
    from core.config import get_config
    from services.image_generation import ImageGenerationClient, ImageModel
    from services.studio import StudioApiClient

    config = get_config()
    images = [_read_image(p) for p in edit_paths or []]
    default = config.models.default_image_edit if images else config.models.default_image
    image_model = ImageModel.resolve(model or default)

    client = StudioApiClient(server_url, token=token) if server_url else ImageGenerationClient(config=config)
    try:
        if len(images) > 1:
            result = await client.compose_image(prompt, images, model=image_model)
        elif images:
            result = await client.edit_image(prompt, images[0], model=image_model)
        else:
            result = await client.generate_image(prompt, image_model, aspect_ratio)
    finally:
        if server_url:
            await client.close()

    output = Path(output_dir)
    output.mkdir(parents=True, exist_ok=True)
    target = output / _image_filename(image_model.value, result.mime_type)
    target.write_bytes(result.data)
    logger.info(f"Saved {target}")
    return target


async def generate_text(args) -> str:
    from core.config import get_config
    from services.image_generation import ImageGenerationClient, SafetyLevel
    from services.studio import StudioApiClient

    kwargs = dict(
        model=args.model,
        temperature=args.temperature,
        top_p=args.top_p,
        max_output_tokens=args.max_tokens,
        safety_level=SafetyLevel(args.safety),
    )
    if args.server:
        client = StudioApiClient(args.server, token=args.token)
        try:
            result = await client.generate_text(args.prompt, **kwargs)
        finally:
            await client.close()
    else:
        result = await ImageGenerationClient(config=get_config()).generate_text(args.prompt, **kwargs)
    return result.text


async def show_logs(server_url: str, token: Optional[str], service: Optional[str],
                    level: Optional[str], limit: int, csv: bool):
    """Print the proxy server's event log."""
    from cli.progress_monitor import format_log_entry
    from services.studio import StudioApiClient

    client = StudioApiClient(server_url, token=token)
    try:
        if csv:
            print(await client.export_logs_csv(service=service, level=level))
            return
        data = await client.get_logs(service=service, level=level, limit=limit)
    finally:
        await client.close()

    for entry in data.get("logs", []):
        print(format_log_entry(entry))
    stats = data.get("stats", {})
    print(f"\n{data.get('count', 0)} shown, {stats.get('total', 0)} buffered, {stats.get('errors', 0)} errors")


def main():
    parser = argparse.ArgumentParser(
        description="Generative Media Studio",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start the proxy server
    python main.py server --port 8000

    # Generate a video from a reference image
    python main.py generate --prompt "the statue starts dancing" --image statue.png

    # Compose two images
    python main.py image --prompt "put the cat on the sofa" --edit cat.png sofa.png
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Server command
    server_parser = subparsers.add_parser("server", help="Start the proxy API server")
    server_parser.add_argument("--host", default=None, help="Host to bind")
    server_parser.add_argument("--port", type=int, default=None, help="Port to bind")
    server_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    remote = argparse.ArgumentParser(add_help=False)
    remote.add_argument("--server", help="Proxy server URL (default: call the provider directly)")
    remote.add_argument("--token", default=None, help="Firebase ID token for the proxy server")

    # Generate command
    gen_parser = subparsers.add_parser("generate", parents=[remote], help="Generate a video")
    gen_parser.add_argument("--prompt", "-p", required=True, help="Video prompt")
    gen_parser.add_argument("--model", "-m", help="Video model id")
    gen_parser.add_argument("--image", "-i", help="Reference image file")
    gen_parser.add_argument("--negative-prompt", "-n", help="What to avoid")
    gen_parser.add_argument("--aspect-ratio", "-a", choices=["16:9", "9:16"], help="Aspect ratio")
    gen_parser.add_argument(
        "--trim", nargs=2, type=float, metavar=("START", "END"),
        help="Capture [START, END) seconds of the result (real time)",
    )
    gen_parser.add_argument("--output", "-o", default="./output", help="Output directory")

    # Image command
    img_parser = subparsers.add_parser("image", parents=[remote], help="Generate or edit an image")
    img_parser.add_argument("--prompt", "-p", required=True, help="Image prompt")
    img_parser.add_argument("--model", "-m", help="Image model id")
    img_parser.add_argument("--edit", nargs="+", metavar="IMAGE", help="Image(s) to edit or compose")
    img_parser.add_argument("--aspect-ratio", "-a", default="16:9", help="Aspect ratio")
    img_parser.add_argument("--output", "-o", default="./output", help="Output directory")

    # Text command
    txt_parser = subparsers.add_parser("text", parents=[remote], help="Generate text")
    txt_parser.add_argument("--prompt", "-p", required=True, help="Prompt")
    txt_parser.add_argument("--model", "-m", help="Text model id")
    txt_parser.add_argument("--temperature", type=float, default=1.0)
    txt_parser.add_argument("--top-p", type=float, default=0.95)
    txt_parser.add_argument("--max-tokens", type=int, default=32768)
    txt_parser.add_argument("--safety", choices=["off", "low", "medium", "high"], default="off")

    # Logs command
    logs_parser = subparsers.add_parser("logs", help="Show the proxy event log")
    logs_parser.add_argument("--server", default="http://localhost:8000", help="Proxy server URL")
    logs_parser.add_argument("--token", default=None, help="Firebase ID token")
    logs_parser.add_argument("--service", help="Filter by service")
    logs_parser.add_argument("--level", choices=["debug", "info", "warn", "error"], help="Filter by level")
    logs_parser.add_argument("--limit", type=int, default=100)
    logs_parser.add_argument("--csv", action="store_true", help="Print CSV export")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from core.config import get_config
    from core.errors import StudioError

    config = get_config()
    logging.getLogger().setLevel(logging.DEBUG if args.verbose else config.logging.level.upper())

    try:
        if args.command == "server":
            start_server(args.host or config.server.host, args.port or config.server.port, args.reload)

        elif args.command == "generate":
            result = asyncio.run(
                generate_video(
                    prompt=args.prompt,
                    model=args.model,
                    image_path=args.image,
                    negative_prompt=args.negative_prompt,
                    aspect_ratio=args.aspect_ratio,
                    trim=tuple(args.trim) if args.trim else None,
                    output_dir=args.output,
                    server_url=args.server,
                    token=args.token,
                )
            )
            sys.exit(0 if result else 1)

        elif args.command == "image":
            asyncio.run(
                generate_image(
                    prompt=args.prompt,
                    model=args.model,
                    edit_paths=args.edit,
                    aspect_ratio=args.aspect_ratio,
                    output_dir=args.output,
                    server_url=args.server,
                    token=args.token,
                )
            )

        elif args.command == "text":
            print(asyncio.run(generate_text(args)))

        elif args.command == "logs":
            asyncio.run(show_logs(args.server, args.token, args.service, args.level, args.limit, args.csv))

    except StudioError as e:
        logger.error(f"{e.code}: {e.message}")
        if e.details:
            logger.error(e.details)
        remediation = getattr(e, "remediation", None)
        if remediation:
            logger.error(f"Try: {remediation}")
        sys.exit(1)


if __name__ == "__main__":
    main()

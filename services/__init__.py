"""
Generative Media Studio Services

- video_generation: Veo gateway, poller and asset retriever
- image_generation: Imagen / Gemini image and text generation
- auth: Firebase bearer-token verification
- api: FastAPI proxy routes
- studio: client-side workflow orchestrator and trim post-processor
"""

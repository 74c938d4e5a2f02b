"""Shotcaller prompt-to-path FastAPI server."""

import json
import logging
import time
from dataclasses import dataclass, field

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from shotcaller import config
from shotcaller.errors import (
    AnalysisError,
    AnimationError,
    EnvironmentAnalysisError,
    MetadataNotFoundError,
    MetadataStoreError,
    PathGenerationError,
    PromptCompilationError,
    ShotcallerError,
)
from shotcaller.models import (
    CameraPathRequest,
    CameraPathResponse,
    EnvironmentalMetadata,
    ErrorResponse,
    HealthResponse,
    ModelMetadata,
    MotionPlanRequest,
    ValidatePathRequest,
    ValidationResult,
)
from shotcaller.pipeline import Pipeline, PipelineConfig
from shotcaller.prompts.examples import EXAMPLES
from shotcaller.services.llm_service import LLMEngine, validate_path
from shotcaller.services.metadata_store import MetadataStore, create_metadata_store

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

_STATUS_CODES: list[tuple[type[ShotcallerError], int]] = [
    (MetadataNotFoundError, 404),
    (MetadataStoreError, 502),
    (PromptCompilationError, 400),
    (AnalysisError, 422),
    (EnvironmentAnalysisError, 422),
    (AnimationError, 422),
    (PathGenerationError, 502),
]


def status_for(error: ShotcallerError) -> int:
    for error_type, status in _STATUS_CODES:
        if isinstance(error, error_type):
            return status
    return 500


def error_body(error: Exception) -> dict:
    details = getattr(error, "errors", None) or None
    return ErrorResponse(error=str(error), details=details).model_dump(exclude_none=True)


@dataclass
class AppServices:
    engine: LLMEngine = field(default_factory=LLMEngine)
    metadata_store: MetadataStore = field(default_factory=create_metadata_store)
    pipeline_config: PipelineConfig = field(default_factory=PipelineConfig)

    def new_pipeline(self) -> Pipeline:
        pipeline = Pipeline(metadata_store=self.metadata_store, engine=self.engine)
        pipeline.scene_analyzer.initialize(self.pipeline_config.scene)
        pipeline.environment_analyzer.initialize(self.pipeline_config.environment)
        pipeline.compiler.initialize(self.pipeline_config.compiler)
        pipeline.interpreter.initialize(self.pipeline_config.interpreter)
        pipeline.planner.initialize(self.pipeline_config.planner)
        return pipeline


def create_app(services: AppServices | None = None) -> FastAPI:
    services = services or AppServices()

    app = FastAPI(
        title="Shotcaller",
        description="Generate collision-aware camera paths from natural-language instructions",
        version=VERSION,
    )
    app.state.services = services

    @app.exception_handler(ShotcallerError)
    async def shotcaller_error(request: Request, exc: ShotcallerError):
        status = status_for(exc)
        logger.warning(f"{request.url.path} failed ({status}): {exc}")
        return JSONResponse(status_code=status, content=error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError):
        messages = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()]
        return JSONResponse(
            status_code=400,
            content=ErrorResponse(error="Invalid request", details=messages).model_dump(),
        )

    # ── REST Endpoints ──────────────────────────────────────────

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="ok",
            version=VERSION,
            providers={
                "claude": bool(config.ANTHROPIC_API_KEY),
                "gemini": bool(config.GOOGLE_API_KEY),
            },
        )

    @app.post("/api/camera-path", response_model=CameraPathResponse, response_model_exclude_none=True)
    async def camera_path(req: CameraPathRequest):
        t0 = time.perf_counter()
        pipeline = services.new_pipeline()
        pipeline.set_model(req.model_id, req.scene_geometry)
        result = await pipeline.generate(req.instruction, req.duration, req.provider, req.model)
        if result is None:
            raise PathGenerationError("Request was superseded")
        elapsed_ms = round((time.perf_counter() - t0) * 1000, 2)
        logger.info(f"Camera path for {req.model_id}: {len(result.commands)} commands in {elapsed_ms}ms")
        return CameraPathResponse(
            keyframes=result.path.keyframes,
            duration=result.path.duration,
            metadata=result.path.metadata,
            commands=result.commands,
            request_id=result.prompt.request_id,
        )

    @app.post("/api/motion-plan", response_model=CameraPathResponse, response_model_exclude_none=True)
    async def motion_plan(req: MotionPlanRequest):
        pipeline = services.new_pipeline()
        pipeline.set_model(req.model_id, req.scene_geometry)
        result = await pipeline.run_plan(req.plan)
        if result is None:
            raise PathGenerationError("Request was superseded")
        logger.info(f"Motion plan for {req.model_id}: {len(req.plan.steps)} steps, {len(result.commands)} commands")
        return CameraPathResponse(
            keyframes=result.path.keyframes,
            duration=result.path.duration,
            metadata=result.path.metadata,
            commands=result.commands,
            request_id=result.prompt.request_id,
        )

    @app.post("/api/validate-path", response_model=ValidationResult)
    async def validate(req: ValidatePathRequest):
        return validate_path(req.path)

    @app.get("/api/models/{model_id}/metadata", response_model=ModelMetadata)
    async def get_metadata(model_id: str):
        return await services.metadata_store.get_model_metadata(model_id)

    @app.put("/api/models/{model_id}/metadata", response_model=ModelMetadata)
    async def put_metadata(model_id: str, metadata: ModelMetadata):
        return await services.metadata_store.store_model_metadata(model_id, metadata)

    @app.put("/api/models/{model_id}/environment", response_model=ModelMetadata)
    async def put_environment(model_id: str, environment: EnvironmentalMetadata):
        return await services.metadata_store.store_environmental_metadata(model_id, environment)

    @app.get("/api/examples")
    async def examples():
        return [
            {"prompt": ex["prompt"], "path": json.loads(ex["path_json"])}
            for ex in EXAMPLES
        ]

    # ── WebSocket Endpoint ──────────────────────────────────────

    @app.websocket("/ws/camera-path")
    async def ws_camera_path(ws: WebSocket):
        await ws.accept()

        try:
            while True:
                data = await ws.receive_json()
                try:
                    req = CameraPathRequest.model_validate(data)
                except ValidationError as e:
                    await ws.send_json({"type": "error", "message": f"Invalid request: {e.errors()[0]['msg']}"})
                    continue

                total_t0 = time.perf_counter()
                pipeline = services.new_pipeline()
                pipeline.set_model(req.model_id, req.scene_geometry)

                await ws.send_json({"type": "status", "message": "Analyzing scene..."})
                try:
                    prepared = await pipeline.prepare(req.instruction, req.duration)
                except ShotcallerError as e:
                    await ws.send_json({"type": "error", **error_body(e)})
                    continue

                # Phase 1: stream LLM tokens
                await ws.send_json({"type": "status", "message": "Generating camera path..."})
                accumulated = ""
                try:
                    async for token in services.engine.stream_path(prepared.prompt, req.provider, req.model):
                        accumulated += token
                        await ws.send_json({"type": "tokens", "content": token})
                except WebSocketDisconnect:
                    raise
                except Exception as e:
                    pipeline.fail(prepared, str(e))
                    await ws.send_json({"type": "error", "message": f"LLM error: {e}"})
                    continue

                # Phase 2: validate and interpret
                try:
                    path = services.engine.path_from_response(accumulated, prepared.prompt)
                    result = pipeline.finish(prepared, path)
                except ShotcallerError as e:
                    pipeline.fail(prepared, str(e))
                    await ws.send_json({"type": "error", **error_body(e)})
                    continue
                if result is None:
                    await ws.send_json({"type": "error", "message": "Request was superseded"})
                    continue

                await ws.send_json({"type": "path", "path": result.path.to_wire()})
                await ws.send_json({
                    "type": "commands",
                    "commands": [c.model_dump(mode="json", by_alias=True) for c in result.commands],
                })
                total_ms = round((time.perf_counter() - total_t0) * 1000, 2)
                await ws.send_json({
                    "type": "done",
                    "request_id": prepared.prompt.request_id,
                    "total_time_ms": total_ms,
                })

        except WebSocketDisconnect:
            logger.info("WebSocket client disconnected")

    return app


app = create_app()


# ── Main ────────────────────────────────────────────────────────


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "shotcaller.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=True,
    )

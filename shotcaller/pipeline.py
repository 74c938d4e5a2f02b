"""Prompt-to-path pipeline: wires the components for one model session."""

import logging
from dataclasses import dataclass, field
from typing import Union

from shotcaller.engine import CameraHandle, ControlsHandle, SimpleCamera, apply_pose, read_pose, snapshot
from shotcaller.errors import (
    AnalysisError,
    AnimationError,
    MetadataNotFoundError,
    MetadataStoreError,
    PathGenerationError,
    ShotcallerError,
)
from shotcaller.models import (
    CameraCommand,
    CameraPath,
    CameraPose,
    CompiledPrompt,
    EnvironmentalAnalysis,
    ModelMetadata,
    MotionPlan,
    SceneAnalysis,
    SceneAnalysisSummary,
)
from shotcaller.playback import PlaybackController, ProgressChannel
from shotcaller.services.environment_analyzer import (
    EnvironmentAnalyzer,
    EnvironmentAnalyzerConfig,
    default_camera_pose,
)
from shotcaller.services.llm_service import LLMEngine, LLMEngineConfig, validate_path
from shotcaller.services.metadata_store import InMemoryMetadataStore, MetadataStore
from shotcaller.services.motion_primitives import MotionPlanner, MotionPlannerConfig
from shotcaller.services.prompt_compiler import PromptCompiler, PromptCompilerConfig
from shotcaller.services.scene_analyzer import LoadedModel, SceneAnalyzer, SceneAnalyzerConfig
from shotcaller.services.scene_interpreter import SceneInterpreter, SceneInterpreterConfig

logger = logging.getLogger(__name__)

ModelSource = Union[LoadedModel, SceneAnalysisSummary]


@dataclass
class PipelineConfig:
    scene: SceneAnalyzerConfig = field(default_factory=SceneAnalyzerConfig)
    environment: EnvironmentAnalyzerConfig = field(default_factory=EnvironmentAnalyzerConfig)
    compiler: PromptCompilerConfig = field(default_factory=PromptCompilerConfig)
    engine: LLMEngineConfig = field(default_factory=LLMEngineConfig)
    interpreter: SceneInterpreterConfig = field(default_factory=SceneInterpreterConfig)
    planner: MotionPlannerConfig = field(default_factory=MotionPlannerConfig)


@dataclass
class PreparedRequest:
    epoch: int
    scene: SceneAnalysis
    environment: EnvironmentalAnalysis
    pose: CameraPose
    prompt: CompiledPrompt


@dataclass
class GenerationResult:
    path: CameraPath
    commands: list[CameraCommand]
    prompt: CompiledPrompt
    environment: EnvironmentalAnalysis


class Pipeline:
    """Instruction in, loaded playback commands out.

    Each ``generate`` call and each model change bumps the epoch; a result
    that finishes under an older epoch is discarded.
    """

    def __init__(
        self,
        metadata_store: MetadataStore | None = None,
        camera: CameraHandle | None = None,
        controls: ControlsHandle | None = None,
        engine: LLMEngine | None = None,
        channel: ProgressChannel | None = None,
    ):
        self.scene_analyzer = SceneAnalyzer()
        self.environment_analyzer = EnvironmentAnalyzer()
        self.compiler = PromptCompiler()
        self.engine = engine or LLMEngine()
        self.interpreter = SceneInterpreter()
        self.planner = MotionPlanner()
        self.metadata_store = metadata_store or InMemoryMetadataStore()
        self.camera = camera or SimpleCamera()
        self.controller = PlaybackController(self.camera, controls, channel)

        self.epoch = 0
        self.model_id: str | None = None
        self.path: CameraPath | None = None
        self._model: ModelSource | None = None
        self._analysis_cache: dict[str, SceneAnalysis] = {}
        self._camera_placed = False

    def initialize(self, pipeline_config: PipelineConfig) -> None:
        self.scene_analyzer.initialize(pipeline_config.scene)
        self.environment_analyzer.initialize(pipeline_config.environment)
        self.compiler.initialize(pipeline_config.compiler)
        self.engine.initialize(pipeline_config.engine)
        self.interpreter.initialize(pipeline_config.interpreter)
        self.planner.initialize(pipeline_config.planner)
        logger.info("Pipeline initialized")

    # ── Model session ───────────────────────────────────────────

    def set_model(self, model_id: str, model: ModelSource) -> None:
        """Switch models. Invalidates the current path and any in-flight generation."""
        self.epoch += 1
        self.path = None
        self.controller.reset()
        self._analysis_cache.pop(model_id, None)
        self.model_id = model_id
        self._model = model
        self._camera_placed = False
        if isinstance(model, SceneAnalysisSummary) and model.current_camera is not None:
            self.place_camera(model.current_camera)
        logger.info(f"Model set: {model_id} (epoch {self.epoch})")

    def place_camera(self, pose: CameraPose) -> None:
        apply_pose(self.camera, pose, self.controller.controls)
        self._camera_placed = True

    def analyze_scene(self) -> SceneAnalysis:
        if self.model_id is None or self._model is None:
            raise AnalysisError("No model loaded")
        cached = self._analysis_cache.get(self.model_id)
        if cached is not None:
            return cached
        if isinstance(self._model, SceneAnalysisSummary):
            analysis = self.scene_analyzer.from_summary(self._model)
        else:
            analysis = self.scene_analyzer.analyze(self._model)
        self._analysis_cache[self.model_id] = analysis
        return analysis

    async def _metadata(self, model_id: str) -> ModelMetadata:
        try:
            return await self.metadata_store.get_model_metadata(model_id)
        except MetadataNotFoundError:
            return ModelMetadata(model_id=model_id)
        except MetadataStoreError as e:
            logger.warning(f"Metadata unavailable for {model_id}, using defaults: {e}")
            return ModelMetadata(model_id=model_id)

    def _stale(self, epoch: int) -> bool:
        return epoch != self.epoch

    # ── Generation ──────────────────────────────────────────────

    async def prepare(self, instruction: str, duration: float) -> PreparedRequest:
        """Bump the epoch, enter ``generating`` and compile the prompt."""
        if self.model_id is None:
            raise AnalysisError("No model loaded")
        self.epoch += 1
        epoch = self.epoch
        model_id = self.model_id
        self.path = None
        self.controller.begin_generation()

        try:
            scene = self.analyze_scene()
            current = read_pose(self.camera) if self._camera_placed else None
            environment = self.environment_analyzer.analyze(scene, current)
            if current is None:
                self.place_camera(default_camera_pose(environment))
            pose = read_pose(self.camera)
            scene = SceneAnalyzer.attach_camera(scene, snapshot(self.camera))

            metadata = await self._metadata(model_id)
            prompt = self.compiler.compile(instruction, scene, environment, metadata, pose, duration)
        except ShotcallerError as e:
            if not self._stale(epoch):
                self.controller.fail_generation(str(e))
            raise
        return PreparedRequest(epoch=epoch, scene=scene, environment=environment, pose=pose, prompt=prompt)

    def finish(self, prepared: PreparedRequest, path: CameraPath) -> GenerationResult | None:
        """Interpret a validated path and load it, unless the request went stale."""
        if self._stale(prepared.epoch):
            logger.warning(f"Discarding stale path (epoch {prepared.epoch}, current {self.epoch})")
            return None
        try:
            commands = self.interpreter.interpret_path(path, prepared.scene, prepared.environment, prepared.pose)
            result = self.interpreter.validate_commands(commands, prepared.environment.object_bounds)
            if not result.is_valid:
                raise AnimationError(f"Commands failed validation: {'; '.join(result.errors)}")
        except ShotcallerError as e:
            self.controller.fail_generation(str(e))
            raise

        self.path = path
        self.controller.load(commands)
        return GenerationResult(path=path, commands=commands, prompt=prepared.prompt,
                                environment=prepared.environment)

    def fail(self, prepared: PreparedRequest, message: str) -> None:
        if not self._stale(prepared.epoch):
            self.controller.fail_generation(message)

    async def generate(
        self,
        instruction: str,
        duration: float = 10.0,
        provider: str | None = None,
        model: str | None = None,
    ) -> GenerationResult | None:
        """Run the full pipeline. Returns None when superseded by a newer request."""
        prepared = await self.prepare(instruction, duration)
        if self._stale(prepared.epoch):
            logger.warning(f"Discarding stale request (epoch {prepared.epoch}, current {self.epoch})")
            return None
        try:
            path = await self.engine.generate_path(prepared.prompt, provider, model)
        except Exception as e:
            if self._stale(prepared.epoch):
                logger.warning(f"Ignoring failure of stale request: {e}")
                return None
            self.fail(prepared, str(e))
            raise
        return self.finish(prepared, path)

    async def run_plan(self, plan: MotionPlan) -> GenerationResult | None:
        """Expand a motion plan into a validated path and load it.

        Shares the epoch, envelope and failure handling of ``generate``; only
        the LLM call is replaced by the motion planner.
        """
        instruction = "Motion plan: " + ", ".join(step.type for step in plan.steps)
        prepared = await self.prepare(instruction, plan.duration)
        if self._stale(prepared.epoch):
            return None
        try:
            path = self.planner.plan_path(plan, prepared.scene, prepared.environment, prepared.pose, self.model_id)
            result = validate_path(path)
            if not result.is_valid:
                raise PathGenerationError("Motion plan produced an invalid path", errors=result.errors)
        except ShotcallerError as e:
            self.fail(prepared, str(e))
            raise
        return self.finish(prepared, path)

    @property
    def commands(self) -> list[CameraCommand]:
        return self.controller.commands

"""
Pipeline Orchestrator - drives one generation or modification request

    resolve project → materialize workspace → generate / modify → parse
    → persist → package → upload + build → deploy → finalize

Each run executes as its own asyncio task and reports through a
ProgressChannel, so a client that disconnects from the stream never
interrupts the run. The workspace cleanup guard is armed before anything
else happens and fires exactly once, on success, on failure or on timeout.

Failure policy:
- anything before the source archive is uploaded fails the run
- build or deploy errors after a successful generation still complete the
  run (success=True, deployment_failed=True) so the new source is kept
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List, Set, Tuple, Callable, Awaitable

from app.core.config import settings
from app.core.exceptions import (
    BuildoraError,
    BuildError,
    DeployError,
    GenerationParseError,
    ModificationError,
    PipelineTimeoutError,
    WorkspaceMaterializationError,
)
from app.core.logging_config import logger, set_build_id, set_session_id, set_project_id
from app.core.types import generate_session_id
from app.models.conversation import MessageRole
from app.models.project import Project, ProjectStatus
from app.modules.orchestrator.cleanup import WorkspaceCleanup
from app.modules.orchestrator.events import ProgressChannel
from app.modules.orchestrator.prompts import GENERATION_SYSTEM_PROMPT, build_regeneration_prompt
from app.modules.orchestrator.state_machine import (
    PipelineState,
    PipelineStateMachine,
    StageResult,
    StageSuccess,
    StageDegraded,
    StageFailure,
)
from app.services.build_service import BuildPlatformClient
from app.services.conversation_context import ConversationContextAssembler
from app.services.modification_engine import ModificationEngineClient
from app.services.project_repository import ProjectRepository
from app.services.project_resolver import ProjectIdentityResolver, ResolutionContext, ResolutionAction
from app.services.project_summary import FileAnalysis, analyze_file, generated_files_message, summarize_project
from app.services.response_parser import GenerationResponseParser
from app.services.session_cache import SessionCacheService
from app.services.storage_service import ObjectStorageService
from app.services.workspace import WorkspaceManager
from app.utils.claude_client import ClaudeClient


Summarizer = Callable[[str, str], Awaitable[str]]


@dataclass
class PipelineRequest:
    prompt: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    scope: Optional[str] = None  # Conversation scope, defaults to the project
    is_modification: bool = False


@dataclass
class PipelineOutcome:
    success: bool
    state: PipelineState
    build_id: str
    session_id: str
    project_id: Optional[str] = None
    files: List[str] = field(default_factory=list)
    files_created: List[str] = field(default_factory=list)
    files_modified: List[str] = field(default_factory=list)
    preview_url: Optional[str] = None
    download_url: Optional[str] = None
    archive_url: Optional[str] = None
    duplicate: bool = False
    deployment_failed: bool = False
    approach: Optional[str] = None
    parse_strategy: Optional[str] = None
    summary: Optional[str] = None
    message: str = ""
    error: Optional[Dict[str, Any]] = None
    duration_ms: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "state": self.state.value,
            "build_id": self.build_id,
            "session_id": self.session_id,
            "project_id": self.project_id,
            "files": self.files,
            "file_count": len(self.files),
            "files_created": self.files_created,
            "files_modified": self.files_modified,
            "preview_url": self.preview_url,
            "download_url": self.download_url,
            "archive_url": self.archive_url,
            "duplicate": self.duplicate,
            "deployment_failed": self.deployment_failed,
            "approach": self.approach,
            "parse_strategy": self.parse_strategy,
            "summary": self.summary,
            "message": self.message,
            "error": self.error,
            "duration_ms": round(self.duration_ms),
        }


@dataclass
class PipelineRun:
    """Mutable state of one run, owned by the task executing it"""
    request: PipelineRequest
    build_id: str
    session_id: str
    machine: PipelineStateMachine
    channel: ProgressChannel
    cleanup: WorkspaceCleanup
    started_at: float = field(default_factory=time.monotonic)
    scope: Optional[str] = None
    project_id: Optional[str] = None
    user_id: Optional[str] = None
    created_project: bool = False
    workspace_path: Optional[Path] = None
    base_archive_url: Optional[str] = None
    base_summary: Optional[str] = None
    base_files: Dict[str, str] = field(default_factory=dict)
    raw_output: str = ""
    files: Dict[str, str] = field(default_factory=dict)
    files_created: List[str] = field(default_factory=list)
    files_modified: List[str] = field(default_factory=list)
    approach: Optional[str] = None
    parse_strategy: Optional[str] = None
    reasoning: Optional[str] = None
    new_summary: Optional[str] = None
    archive_bytes: bytes = b""
    archive_url: Optional[str] = None
    download_url: Optional[str] = None
    preview_url: Optional[str] = None
    deployment_error: Optional[BuildoraError] = None

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000


class PipelineOrchestrator:
    """Runs pipelines; every collaborator is injected"""

    def __init__(
        self,
        cache: SessionCacheService,
        projects: ProjectRepository,
        resolver: ProjectIdentityResolver,
        context: ConversationContextAssembler,
        workspace: WorkspaceManager,
        generator: ClaudeClient,
        storage: ObjectStorageService,
        builder: BuildPlatformClient,
        modifier: ModificationEngineClient,
        parser: Optional[GenerationResponseParser] = None,
        summarizer: Optional[Summarizer] = None,
        cleanup_timeout: Optional[float] = None,
    ):
        self.cache = cache
        self.projects = projects
        self.resolver = resolver
        self.context = context
        self.workspace = workspace
        self.generator = generator
        self.storage = storage
        self.builder = builder
        self.modifier = modifier
        self.parser = parser or GenerationResponseParser()
        self.summarizer = summarizer
        self.cleanup_timeout = cleanup_timeout
        self._tasks: Set[asyncio.Task] = set()

    # ==================== Entry points ====================

    def start(self, request: PipelineRequest) -> Tuple[ProgressChannel, asyncio.Task]:
        """Launch a run as a background task and hand back its progress channel"""
        run = self._new_run(request)
        task = asyncio.create_task(self._run(run), name=f"pipeline-{run.build_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return run.channel, task

    async def execute(self, request: PipelineRequest) -> PipelineOutcome:
        """Run to completion; the run survives cancellation of the caller"""
        _, task = self.start(request)
        return await asyncio.shield(task)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    @property
    def active_runs(self) -> int:
        return len(self._tasks)

    def _new_run(self, request: PipelineRequest) -> PipelineRun:
        build_id = str(uuid.uuid4())
        session_id = request.session_id or generate_session_id()
        return PipelineRun(
            request=request,
            build_id=build_id,
            session_id=session_id,
            machine=PipelineStateMachine(f"Pipeline:{build_id[:8]}"),
            channel=ProgressChannel(build_id, session_id, settings.PIPELINE_TOTAL_STEPS),
            cleanup=WorkspaceCleanup(build_id, session_id, self.workspace, self.cache, self.cleanup_timeout),
        )

    # ==================== Run lifecycle ====================

    async def _run(self, run: PipelineRun) -> PipelineOutcome:
        set_build_id(run.build_id)
        set_session_id(run.session_id)
        stages = asyncio.ensure_future(self._execute(run))
        # The timer only interrupts the stages, never the bookkeeping below
        run.cleanup.on_expire = stages.cancel
        run.cleanup.arm()

        try:
            outcome = await stages
        except asyncio.CancelledError:
            if not run.cleanup.expired:
                run.channel.error("Pipeline cancelled", code="CANCELLED")
                raise
            outcome = await self._fail(run, PipelineTimeoutError(run.build_id, run.cleanup.timeout_seconds))
        except Exception as e:
            outcome = await self._fail(run, e)
        finally:
            await run.cleanup.run_now(run.machine.state.value)

        outcome.duration_ms = run.elapsed_ms
        logger.log_performance(f"pipeline {run.machine.state.value}", outcome.duration_ms, threshold_ms=120000)
        if outcome.success:
            run.channel.complete(outcome.to_dict())
        else:
            error = outcome.error or {}
            run.channel.error(outcome.message, code=error.get("code", "INTERNAL_ERROR"), details=error.get("details"))
        return outcome

    async def _execute(self, run: PipelineRun) -> PipelineOutcome:
        request = run.request

        self._progress(run, 1, "Resolving project")
        resolution = await self.resolver.resolve(
            run.session_id,
            run.build_id,
            ResolutionContext(
                project_id=request.project_id,
                user_id=request.user_id,
                is_modification=request.is_modification,
                prompt=request.prompt,
            ),
        )
        run.project_id = resolution.project_id
        run.created_project = resolution.action == ResolutionAction.CREATED
        run.scope = request.scope or f"project:{resolution.project_id}"
        if resolution.project is not None:
            run.user_id = str(resolution.project.user_id)
        set_project_id(run.project_id)

        if resolution.duplicate:
            run.machine.transition(PipelineState.DUPLICATE_SHORT_CIRCUIT, reason=resolution.strategy)
            return await self._duplicate_outcome(run, resolution.project)

        await self.cache.update_session_record(run.session_id, build_id=run.build_id, project_id=run.project_id)
        await self.context.add_message(
            run.scope,
            MessageRole.USER.value,
            request.prompt,
            metadata={"project_id": run.project_id, "build_id": run.build_id},
            session_id=run.session_id,
        )

        self._check(await self._materialize(run, resolution.project))

        if request.is_modification:
            result = self._check(await self._modify(run))
            if result.data.get("needs_parsing"):
                self._check(self._parse(run))
        else:
            self._check(await self._generate(run))
            self._check(self._parse(run))

        self._check(await self._persist(run))
        self._check(await self._package(run))
        self._check(await self._build_and_deploy(run))
        return await self._finalize(run)

    def _check(self, result: StageResult) -> StageResult:
        if isinstance(result, StageFailure):
            if result.fatal:
                raise result.error
            logger.warning(f"Stage {result.stage.value} failed without ending the run: {result.error}")
        elif isinstance(result, StageDegraded):
            logger.warning(f"Stage {result.stage.value} degraded: {result.warning}")
        return result

    def _progress(self, run: PipelineRun, step: int, message: str, **extra) -> None:
        run.channel.progress(step, message, **extra)
        logger.log_stage_event(run.machine.state.value, message)

    async def _enter(self, run: PipelineRun, state: PipelineState, step: int, message: str) -> None:
        run.machine.transition(state)
        self._progress(run, step, message)
        # Touching the record refreshes last_activity and the session TTL
        await self.cache.update_session_record(run.session_id, build_id=run.build_id)

    # ==================== Stages ====================

    async def _materialize(self, run: PipelineRun, project: Optional[Project]) -> StageResult:
        await self._enter(run, PipelineState.MATERIALIZING, 2, "Preparing workspace")

        if run.request.is_modification:
            await self._locate_base(run, project)

        result: StageResult
        if run.base_archive_url:
            try:
                run.workspace_path = await self.workspace.materialize_from_archive(run.build_id, run.base_archive_url)
                result = StageSuccess(PipelineState.MATERIALIZING, {"source": "archive"})
            except WorkspaceMaterializationError as e:
                logger.warning(f"Falling back to blank template: {e.message}", extra={"error_code": e.code})
                run.workspace_path = await self.workspace.create_from_template(run.build_id)
                run.base_archive_url = None
                result = StageDegraded(PipelineState.MATERIALIZING, e.message, {"source": "template"})
        else:
            run.workspace_path = await self.workspace.create_from_template(run.build_id)
            result = StageSuccess(PipelineState.MATERIALIZING, {"source": "template"})

        await self.cache.update_session_record(run.session_id, workspace_path=str(run.workspace_path))
        return result

    async def _locate_base(self, run: PipelineRun, project: Optional[Project]) -> None:
        """Archive to start from: project record, then session cache, then active summary"""
        if project is not None and project.archive_url:
            run.base_archive_url = project.archive_url

        record = await self.cache.get_session_record(run.session_id)
        if record is not None and record.project_summary:
            run.base_summary = record.project_summary.get("summary")
            run.base_archive_url = run.base_archive_url or record.project_summary.get("archive_url")

        if not run.base_archive_url or not run.base_summary:
            active = await self.projects.get_active_project_summary()
            if active is not None and (active.project_id is None or str(active.project_id) == run.project_id):
                run.base_archive_url = run.base_archive_url or active.archive_url
                run.base_summary = run.base_summary or active.summary

    async def _stream_generation(self, run: PipelineRun, prompt: str) -> str:
        chunks: List[str] = []
        received = 0
        chunk_bytes = settings.PROGRESS_CHUNK_BYTES
        next_report = chunk_bytes

        async for chunk in self.generator.generate_stream(
            prompt=prompt,
            system_prompt=GENERATION_SYSTEM_PROMPT,
            model="generation",
        ):
            chunks.append(chunk)
            received += len(chunk.encode("utf-8"))
            if received >= next_report:
                run.channel.progress(
                    3, f"Generating code ({received // 1024} KB received)", bytes_received=received
                )
                next_report = (received // chunk_bytes + 1) * chunk_bytes

        logger.info(f"Generation stream finished: {received} bytes")
        return "".join(chunks)

    async def _generate(self, run: PipelineRun) -> StageResult:
        await self._enter(run, PipelineState.GENERATING, 3, "Generating code")
        run.raw_output = await self._stream_generation(run, run.request.prompt)
        run.approach = "FULL_GENERATION"
        return StageSuccess(PipelineState.GENERATING, {"bytes": len(run.raw_output)})

    async def _modify(self, run: PipelineRun) -> StageResult:
        await self._enter(run, PipelineState.MODIFYING, 3, "Applying modification")
        session_id = run.session_id

        run.base_files = await self.workspace.read_source_files(run.workspace_path)
        await self.cache.set_project_files(session_id, run.base_files)

        context = await self.context.get_context(run.scope, session_id, project_summary=run.base_summary)
        prompt = run.request.prompt
        enhanced = f"{context}\n\n--- CURRENT REQUEST ---\n{prompt}" if context.strip() else prompt

        if self.modifier.is_configured and run.base_archive_url:
            try:
                result = await self.modifier.modify(enhanced, run.base_files, session_id, run.base_summary)
            except ModificationError as e:
                return StageFailure(PipelineState.MODIFYING, e)
            run.files = result.files
            run.approach = result.approach
            run.reasoning = result.reasoning
            run.files_created = list(result.added_files)
            run.files_modified = result.modified_files
            return StageSuccess(PipelineState.MODIFYING, {"approach": result.approach, "needs_parsing": False})

        reason = "modification engine not configured" if not self.modifier.is_configured else "no base project to edit"
        run.raw_output = await self._stream_generation(run, build_regeneration_prompt(enhanced, run.base_files))
        run.approach = "FULL_REGENERATION"
        return StageDegraded(PipelineState.MODIFYING, f"Regenerating with context: {reason}", {"needs_parsing": True})

    def _parse(self, run: PipelineRun) -> StageResult:
        run.machine.transition(PipelineState.PARSING)
        self._progress(run, 4, "Parsing generated files")
        try:
            outcome = self.parser.parse(run.raw_output)
        except GenerationParseError as e:
            return StageFailure(PipelineState.PARSING, e)

        run.files = outcome.files
        run.parse_strategy = outcome.strategy
        run.files_created = [path for path in outcome.files if path not in run.base_files]
        run.files_modified = [
            path for path, content in outcome.files.items()
            if path in run.base_files and run.base_files[path] != content
        ]
        return StageSuccess(PipelineState.PARSING, {"strategy": outcome.strategy, "file_count": outcome.file_count})

    async def _persist(self, run: PipelineRun) -> StageResult:
        await self._enter(run, PipelineState.PERSISTING, 5, f"Writing {len(run.files)} files")

        written = await self.workspace.write_files(run.workspace_path, run.files)
        if not written:
            return StageFailure(
                PipelineState.PERSISTING,
                GenerationParseError("Generated output contained no writable files", raw_output=run.raw_output),
            )

        all_files = await self.workspace.read_source_files(run.workspace_path)
        await self.cache.set_project_files(run.session_id, all_files)

        summary_files = {path: content for path, content in all_files.items() if path.startswith("src/")} or all_files
        analyses = await self._analyze(summary_files)
        run.new_summary = await summarize_project(summary_files, self.summarizer, analyses)

        await self.projects.set_status(run.project_id, ProjectStatus.GENERATED)
        return StageSuccess(PipelineState.PERSISTING, {"written": len(written)})

    async def _analyze(self, files: Dict[str, str]) -> List[FileAnalysis]:
        analyses = []
        for path, content in files.items():
            data = await self.cache.get_or_compute_ast_analysis(path, content, self._compute_analysis)
            analysis = FileAnalysis.from_dict(data)
            # Identical content may have been analyzed under another path
            analysis.path = path
            analyses.append(analysis)
        return analyses

    @staticmethod
    async def _compute_analysis(path: str, content: str) -> Dict[str, Any]:
        return analyze_file(path, content).to_dict()

    async def _package(self, run: PipelineRun) -> StageResult:
        await self._enter(run, PipelineState.PACKAGING, 6, "Packaging source")
        run.archive_bytes = await self.workspace.create_archive(run.workspace_path)
        return StageSuccess(PipelineState.PACKAGING, {"bytes": len(run.archive_bytes)})

    async def _build_and_deploy(self, run: PipelineRun) -> StageResult:
        await self._enter(run, PipelineState.BUILDING, 7, "Uploading source")

        run.archive_url = await self.storage.upload_source_archive(run.build_id, run.archive_bytes)
        # Recorded before the build so a failed build still leaves a usable base
        await self.projects.update_project(
            run.project_id,
            archive_url=run.archive_url,
            build_id=run.build_id,
            status=ProjectStatus.BUILDING,
        )
        await self._save_project_summary(run)

        self._progress(run, 7, "Building project")
        try:
            build = await self.builder.trigger_build(run.archive_url, run.build_id)
            await self._enter(run, PipelineState.DEPLOYING, 8, "Deploying")
            deployment = await self.builder.deploy(build.download_url, run.build_id)
        except (BuildError, DeployError) as e:
            run.deployment_error = e
            return StageFailure(run.machine.state, e, fatal=False)

        run.preview_url = deployment.preview_url
        run.download_url = deployment.download_url
        return StageSuccess(PipelineState.DEPLOYING, {"preview_url": run.preview_url})

    async def _save_project_summary(self, run: PipelineRun) -> None:
        await self.cache.update_session_record(
            run.session_id,
            project_id=run.project_id,
            project_summary={
                "summary": run.new_summary,
                "archive_url": run.archive_url,
                "build_id": run.build_id,
            },
        )
        try:
            await self.projects.save_project_summary(
                run.new_summary,
                project_id=run.project_id,
                original_prompt=run.request.prompt,
                archive_url=run.archive_url,
                build_id=run.build_id,
            )
        except Exception as e:
            logger.warning(f"Could not save project summary: {e}")
        await self.context.invalidate(run.session_id)

    async def _finalize(self, run: PipelineRun) -> PipelineOutcome:
        await self._enter(run, PipelineState.FINALIZING, 9, "Finalizing")
        deployed = run.deployment_error is None

        await self.projects.finalize_project(
            run.project_id,
            session_id=run.session_id,
            build_id=run.build_id,
            archive_url=run.archive_url,
            download_url=run.download_url,
            deployment_url=run.preview_url,
            status=ProjectStatus.READY if deployed else ProjectStatus.GENERATED,
        )

        if run.request.is_modification:
            await self.context.record_modification(
                run.scope,
                run.session_id,
                {
                    "prompt": run.request.prompt,
                    "approach": run.approach,
                    "files_modified": run.files_modified,
                    "files_created": run.files_created,
                    "success": True,
                    "reasoning": run.reasoning,
                },
                project_id=run.project_id,
            )
        else:
            await self.context.add_message(
                run.scope,
                MessageRole.ASSISTANT.value,
                generated_files_message(run.files),
                metadata={
                    "project_id": run.project_id,
                    "file_modifications": list(run.files),
                    "approach": run.approach,
                    "success": True,
                    "build_id": run.build_id,
                    "preview_url": run.preview_url,
                },
                session_id=run.session_id,
            )

        if run.created_project and run.user_id:
            await self.projects.archive_old_projects(run.user_id, keep=settings.PROJECTS_KEEP_LATEST)

        kind = "Modification" if run.request.is_modification else "Generation"
        if deployed:
            message = f"{kind} completed successfully"
        else:
            message = f"{kind} completed successfully, but build/deploy failed"

        outcome = PipelineOutcome(
            success=True,
            state=PipelineState.DONE,
            build_id=run.build_id,
            session_id=run.session_id,
            project_id=run.project_id,
            files=sorted(run.files),
            files_created=run.files_created,
            files_modified=run.files_modified,
            preview_url=run.preview_url,
            download_url=run.download_url,
            archive_url=run.archive_url,
            deployment_failed=not deployed,
            approach=run.approach,
            parse_strategy=run.parse_strategy,
            summary=run.new_summary,
            message=message,
            error=run.deployment_error.to_dict() if run.deployment_error else None,
        )
        await self.cache.set_build_cache(run.build_id, outcome.to_dict())

        run.machine.transition(PipelineState.DONE)
        self._progress(run, settings.PIPELINE_TOTAL_STEPS, message)
        return outcome

    async def _duplicate_outcome(self, run: PipelineRun, project: Project) -> PipelineOutcome:
        cached = await self.cache.get_build_cache(project.build_id) if project.build_id else None
        return PipelineOutcome(
            success=True,
            state=PipelineState.DUPLICATE_SHORT_CIRCUIT,
            build_id=project.build_id or run.build_id,
            session_id=run.session_id,
            project_id=str(project.id),
            files=(cached or {}).get("files", []),
            preview_url=project.deployment_url,
            download_url=project.download_url,
            archive_url=project.archive_url,
            duplicate=True,
            summary=(cached or {}).get("summary"),
            message="Project is already up to date",
        )

    async def _fail(self, run: PipelineRun, error: Exception) -> PipelineOutcome:
        logger.log_error_with_context(error, f"pipeline stage {run.machine.state.value}")

        if not run.machine.is_terminal:
            run.machine.transition(PipelineState.FAILED, reason=type(error).__name__)

        if isinstance(error, BuildoraError):
            error_info = error.to_dict()
        else:
            error_info = {"code": "INTERNAL_ERROR", "message": str(error), "details": {}}

        if run.project_id:
            try:
                await self.projects.set_status(run.project_id, ProjectStatus.FAILED)
            except Exception as e:
                logger.warning(f"Could not mark project {run.project_id} failed: {e}")

        if run.scope:
            try:
                await self.context.add_message(
                    run.scope,
                    MessageRole.ASSISTANT.value,
                    f"Error: {error_info['message']}",
                    metadata={
                        "project_id": run.project_id,
                        "success": False,
                        "approach": run.approach,
                        "error_code": error_info["code"],
                        "build_id": run.build_id,
                    },
                    session_id=run.session_id,
                )
            except Exception as e:
                logger.warning(f"Could not record error message: {e}")

        return PipelineOutcome(
            success=False,
            state=PipelineState.FAILED,
            build_id=run.build_id,
            session_id=run.session_id,
            project_id=run.project_id,
            approach=run.approach,
            message=error_info["message"],
            error=error_info,
        )

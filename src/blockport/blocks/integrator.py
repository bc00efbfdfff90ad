"""
Integration pipeline for blocks.

:class:`BlockIntegrator` resolves a block source, brings its staging checkout up
to date, installs its package requirements, generates its files into the host
project (sub-blocks concurrently), then registers the result with the host's
route configuration or parent container.

Stages run strictly in order and every fatal error stops the pipeline where it
happened. Nothing is rolled back: files written by earlier stages stay on disk.
Progress is reported as :class:`~blockport.event_progress.StageEvent` objects.
"""

from __future__ import annotations

import asyncio
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Awaitable, Callable, Iterator

from blockport.blocks.cache import (
    FilesystemCacheStore,
    ReconcileStatus,
    RepositoryCacheManager,
)
from blockport.blocks.dependencies import (
    InstallOptions,
    NpmDependencyInstaller,
    collect_requirements,
    detect_npm_client,
    find_fastest_registry,
)
from blockport.blocks.generator import FileBlockGenerator, GenerationResult, GeneratorOptions
from blockport.blocks.manifest import load_block_manifest
from blockport.blocks.routes import FileHostWriter, build_route_descriptor
from blockport.blocks.source import AcquisitionContext, resolve_acquisition_context
from blockport.config import Settings, get_settings
from blockport.constants import DEFAULT_VIEW_PORT
from blockport.core.exceptions import (
    BlockportError,
    ContainerWriteFailed,
    GenerationFailed,
    InstallFailed,
    RouteWriteFailed,
    SubBlockGenerationFailed,
)
from blockport.core.logging.logger import get_logger
from blockport.event_progress import StageEventSink, StageRecorder

if TYPE_CHECKING:
    from blockport.blocks.cache import CacheStore, GitClient
    from blockport.blocks.dependencies import DependencyInstaller
    from blockport.blocks.generator import GeneratorFactory
    from blockport.blocks.manifest import BlockManifest
    from blockport.blocks.routes import HostProjectWriter, RouteDescriptor

logger = get_logger(__name__)


@dataclass
class IntegrateOptions:
    """Per-invocation options. Anything left unset falls back to ``BlockSettings``."""

    path: str | None = None
    branch: str | None = None
    npm_client: str | None = None
    registry: str | None = None
    page: bool | None = None
    """Force page (True) or component (False) mode instead of reading ``specVersion``."""
    layout: bool = False
    dry_run: bool = False
    skip_dependencies: bool = False
    skip_modify_routes: bool = False
    js: bool = False
    """Convert the generated TypeScript to JavaScript."""
    uni18n: str | None = None
    """Locale to keep while stripping locale lookups from the generated code."""


@dataclass(frozen=True)
class SubBlockNode:
    relative_path: str
    context: AcquisitionContext
    manifest: "BlockManifest"


@dataclass(frozen=True)
class BlockTree:
    """A block and the sub-blocks its manifest declares, resolved before generation."""

    context: AcquisitionContext
    manifest: "BlockManifest"
    sub_blocks: tuple[SubBlockNode, ...] = ()

    @property
    def manifests(self) -> list["BlockManifest"]:
        return [self.manifest, *(node.manifest for node in self.sub_blocks)]


@dataclass
class IntegrationResult:
    context: AcquisitionContext
    generation: GenerationResult
    is_page_block: bool
    route_path: str
    sub_block_results: tuple[GenerationResult, ...] = ()
    cache_status: ReconcileStatus | None = None
    route: "RouteDescriptor | None" = None
    route_created: bool = False
    container_import_appended: bool = False
    view_url: str = ""
    dry_run: bool = False
    logs: list[str] = field(default_factory=list)

    @property
    def generated_paths(self) -> list[Path]:
        paths = list(self.generation.files)
        for result in self.sub_block_results:
            paths.extend(result.files)
        return paths


def normalize_route_path(path: str) -> str:
    """``demo`` -> ``/demo``; Windows separators become ``/``."""
    normalized = path.strip().replace("\\", "/")
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized


def build_block_tree(ctx: AcquisitionContext, manifest: "BlockManifest") -> BlockTree:
    """Resolve the declared sub-blocks relative to the parent's template directory.

    Only the primary block's declarations are followed; a sub-block's own
    sub-blocks are not expanded.
    """
    nodes: list[SubBlockNode] = []
    for relative in manifest.sub_blocks:
        source_path = (ctx.template_dir / relative).resolve()
        sub_ctx = AcquisitionContext(
            source_locator=relative,
            is_local=ctx.is_local,
            source_path=source_path,
            template_dir=ctx.template_dir,
            source_id=ctx.source_id,
            repo=ctx.repo,
            branch=ctx.branch,
            path_in_repo=ctx.path_in_repo,
            staging_root=ctx.staging_root,
            staging_dir=ctx.staging_dir,
            repo_exists=ctx.repo_exists,
        )
        if not source_path.is_dir():
            raise SubBlockGenerationFailed(f"Sub-block '{relative}' not found", str(source_path))
        try:
            sub_manifest = load_block_manifest(source_path)
        except BlockportError as exc:
            raise SubBlockGenerationFailed(
                f"Sub-block '{relative}' has no usable manifest", exc.message
            ) from exc
        if sub_manifest.sub_blocks:
            logger.debug(
                "Nested sub-blocks are not expanded",
                data={"sub_block": relative, "declared": list(sub_manifest.sub_blocks)},
            )
        sub_ctx.manifest = sub_manifest
        nodes.append(SubBlockNode(relative, sub_ctx, sub_manifest))
    return BlockTree(context=ctx, manifest=manifest, sub_blocks=tuple(nodes))


class BlockIntegrator:
    """Runs the add-block pipeline against one host project."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        project_root: Path | None = None,
        cache_store: "CacheStore | None" = None,
        git: "GitClient | None" = None,
        installer: "DependencyInstaller | None" = None,
        generator_factory: "GeneratorFactory" = FileBlockGenerator,
        writer: "HostProjectWriter | None" = None,
        registry_resolver: Callable[[], Awaitable[str]] = find_fastest_registry,
        transpile: Callable[[Path], None] | None = None,
        strip_locale: Callable[[Path, str], None] | None = None,
        modify_route: Callable[["RouteDescriptor"], "RouteDescriptor"] | None = None,
        present_view_url: Callable[[str], None] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.project_root = (project_root or Path.cwd()).resolve()
        store = cache_store or FilesystemCacheStore(self.settings.block.staging_dir)
        self.cache = RepositoryCacheManager(store, git)
        self.installer = installer or NpmDependencyInstaller()
        self.generator_factory = generator_factory
        self.writer = writer or FileHostWriter()
        self._registry_resolver = registry_resolver
        self._transpile = transpile
        self._strip_locale = strip_locale
        self._modify_route = modify_route
        self._present_view_url = present_view_url

    @property
    def routes_file(self) -> Path:
        return self.project_root / self.settings.block.routes_file

    @contextmanager
    def _stage(
        self,
        recorder: StageRecorder,
        stage: str,
        message: str,
        wrap: type[BlockportError] | None = None,
    ) -> Iterator[None]:
        recorder.started(stage, message)
        try:
            yield
        except BlockportError as exc:
            recorder.failed(stage, exc.message, exc.details or None)
            raise
        except Exception as exc:
            if wrap is None:
                recorder.failed(stage, str(exc))
                raise
            error = wrap(f"{message} failed", str(exc))
            recorder.failed(stage, error.message, error.details)
            raise error from exc
        recorder.succeeded(stage)

    async def integrate(
        self,
        locator: str,
        options: IntegrateOptions | None = None,
        *,
        sink: StageEventSink | None = None,
    ) -> IntegrationResult:
        options = options or IntegrateOptions()
        block_settings = self.settings.block
        recorder = StageRecorder(sink)

        with self._stage(recorder, "resolve", "Parse url and args"):
            ctx = resolve_acquisition_context(
                locator,
                cache_store=self.cache.store,
                branch=options.branch,
                default_git_url=block_settings.default_git_url,
                cwd=self.project_root,
            )
            logger.debug(
                "Resolved acquisition context",
                data={"source_id": ctx.source_id, "source_path": str(ctx.source_path)},
            )
            if ctx.is_local:
                # local sources have no cache step; their path is checked here
                cache_status = (await self.cache.reconcile(ctx)).status

        if not ctx.is_local:
            cache_status = await self._reconcile(ctx, recorder)

        with self._stage(recorder, "manifest", "Read block manifest"):
            manifest = load_block_manifest(ctx.source_path)
            ctx.manifest = manifest
            tree = build_block_tree(ctx, manifest)

        is_page_block = options.page if options.page is not None else manifest.declares_page
        mode = "page" if is_page_block else "component"
        recorder.info(
            "mode",
            f"Integrating '{manifest.block_name}' as a {mode} block",
            is_page_block=is_page_block,
        )

        ctx.route_path = self._route_path(options, manifest, recorder)

        await self._install_dependencies(tree, options, recorder)

        with self._stage(recorder, "generate", "Generate files", wrap=GenerationFailed):
            generator = self.generator_factory(
                self._generator_options(
                    ctx.source_path, ctx.route_path, manifest, is_page_block, options
                )
            )
            generation = await asyncio.to_thread(generator.run)

        sub_results = await self._generate_sub_blocks(tree, generation, options, recorder)

        self._post_process(generation, options, recorder)

        route, route_created = self._write_route(generation, options, recorder)

        appended = False
        if not is_page_block:
            appended = self._append_to_container(generation, options, recorder)

        view_url = self._announce_view_url(generation, recorder)

        return IntegrationResult(
            context=ctx,
            generation=generation,
            is_page_block=is_page_block,
            route_path=ctx.route_path,
            sub_block_results=sub_results,
            cache_status=cache_status,
            route=route,
            route_created=route_created,
            container_import_appended=appended,
            view_url=view_url,
            dry_run=options.dry_run,
            logs=list(recorder.logs),
        )

    async def _reconcile(
        self, ctx: AcquisitionContext, recorder: StageRecorder
    ) -> ReconcileStatus:
        if not ctx.repo_exists:
            with self._stage(recorder, "clone", "Clone the git repo"):
                outcome = await self.cache.reconcile(ctx)
            return outcome.status

        with self._stage(recorder, "update", "Update the git repo"):
            outcome = await self.cache.reconcile(ctx)
            if outcome.warning is not None:
                recorder.warning(
                    "update",
                    "Update failed, using the cached copy. "
                    "Run `blockport block clear` to force a fresh clone.",
                    outcome.warning.details or outcome.warning.message,
                )
        return outcome.status

    def _route_path(
        self, options: IntegrateOptions, manifest: "BlockManifest", recorder: StageRecorder
    ) -> str:
        if options.path:
            route_path = normalize_route_path(options.path)
            recorder.info("route-path", f"Using --path '{route_path}' as the target path.")
        else:
            route_path = normalize_route_path(manifest.block_name)
            recorder.info(
                "route-path",
                f"No --path given, using block name '{route_path}' as the target path.",
            )
        return route_path

    async def _install_dependencies(
        self, tree: BlockTree, options: IntegrateOptions, recorder: StageRecorder
    ) -> None:
        if options.skip_dependencies:
            recorder.skipped("dependencies", "Skipping dependency install (--skip-dependencies)")
            return

        with self._stage(
            recorder, "dependencies", "Install extra dependencies", wrap=InstallFailed
        ):
            requirements = collect_requirements(tree.manifests)
            plan = self.installer.check(requirements, self.project_root)
            if not plan.lacks:
                return
            missing = ", ".join(str(req) for req in plan.lacks)
            if options.dry_run:
                recorder.info("dependencies", f"Dry run, would install: {missing}")
                return
            registry = (
                options.registry
                or self.settings.block.registry
                or await self._registry_resolver()
            )
            client = detect_npm_client(
                self.project_root, options.npm_client or self.settings.block.npm_client
            )
            recorder.info("dependencies", f"Installing {missing} with {client}", registry=registry)
            await self.installer.install(
                plan,
                InstallOptions(
                    client=client, registry_url=registry, project_root=self.project_root
                ),
            )

    def _generator_options(
        self,
        source_path: Path,
        route_path: str,
        manifest: "BlockManifest",
        is_page_block: bool,
        options: IntegrateOptions,
    ) -> GeneratorOptions:
        return GeneratorOptions(
            source_path=source_path,
            path=route_path,
            block_name=manifest.block_name,
            is_page_block=is_page_block,
            dry_run=options.dry_run,
            project_root=self.project_root,
            pages_dir=self.settings.block.pages_dir,
        )

    async def _generate_sub_blocks(
        self,
        tree: BlockTree,
        parent: GenerationResult,
        options: IntegrateOptions,
        recorder: StageRecorder,
    ) -> tuple[GenerationResult, ...]:
        if not tree.sub_blocks:
            return ()

        if parent.is_page_block:
            target = parent.path
        else:
            target = str(PurePosixPath(parent.path) / parent.block_folder_name)

        with self._stage(
            recorder,
            "sub-blocks",
            f"Generate {len(tree.sub_blocks)} sub-block(s)",
            wrap=SubBlockGenerationFailed,
        ):
            generators = [
                self.generator_factory(
                    self._generator_options(
                        node.context.source_path, target, node.manifest, False, options
                    )
                )
                for node in tree.sub_blocks
            ]
            try:
                results = await asyncio.gather(
                    *(asyncio.to_thread(generator.run) for generator in generators)
                )
            except SubBlockGenerationFailed:
                raise
            except BlockportError as exc:
                raise SubBlockGenerationFailed(exc.message, exc.details) from exc
        return tuple(results)

    def _post_process(
        self, generation: GenerationResult, options: IntegrateOptions, recorder: StageRecorder
    ) -> None:
        steps: list[tuple[str, str, Callable[[], None] | None]] = []
        if options.js:
            transpile = self._transpile
            steps.append(
                (
                    "transpile",
                    "TypeScript to JavaScript",
                    (lambda: transpile(generation.block_folder_path)) if transpile else None,
                )
            )
        if options.uni18n:
            strip = self._strip_locale
            locale = options.uni18n
            steps.append(
                (
                    "strip-locale",
                    "Remove i18n code",
                    (lambda: strip(generation.block_folder_path, locale)) if strip else None,
                )
            )

        for stage, message, action in steps:
            if options.dry_run:
                recorder.skipped(stage, f"{message} (dry run)")
            elif action is None:
                recorder.skipped(stage, f"{message}: no post-processor configured")
                logger.warning("Post-processor not configured", data={"stage": stage})
            else:
                with self._stage(recorder, stage, message, wrap=GenerationFailed):
                    action()

    def _write_route(
        self, generation: GenerationResult, options: IntegrateOptions, recorder: StageRecorder
    ) -> tuple["RouteDescriptor | None", bool]:
        if not generation.need_create_new_route:
            return None, False
        if options.skip_modify_routes:
            recorder.skipped("write-route", "Skipping route write (--skip-modify-routes)")
            return None, False
        if not self.routes_file.is_file():
            recorder.skipped(
                "write-route",
                f"No route configuration at {self.routes_file}, add the route manually",
            )
            return None, False

        with self._stage(
            recorder,
            "write-route",
            f"Write route {generation.path} to {self.routes_file}",
            wrap=RouteWriteFailed,
        ):
            route = build_route_descriptor(generation.path, is_layout=options.layout)
            if self._modify_route is not None:
                route = self._modify_route(route)
            if options.dry_run:
                recorder.info("write-route", "Dry run, route not written", route=route)
                return route, False
            created = self.writer.write_route(route, self.routes_file)
        return route, created

    def _append_to_container(
        self, generation: GenerationResult, options: IntegrateOptions, recorder: StageRecorder
    ) -> bool:
        entry_path = generation.entry_path
        if entry_path is None:
            recorder.skipped("append-import", "No container file found for the block")
            return False

        with self._stage(
            recorder,
            "append-import",
            f"Write block component {generation.block_folder_name} import to {entry_path}",
            wrap=ContainerWriteFailed,
        ):
            if options.dry_run:
                recorder.info("append-import", "Dry run, container not modified")
                return False
            appended = self.writer.append_import(entry_path, generation.block_folder_name)
        return appended

    def _announce_view_url(self, generation: GenerationResult, recorder: StageRecorder) -> str:
        port = os.environ.get("PORT") or self.settings.block.port or DEFAULT_VIEW_PORT
        view_url = f"http://localhost:{port}{generation.path.lower()}"
        recorder.info("view-url", f"probable url {view_url} for view the block.", url=view_url)
        if self._present_view_url is not None:
            try:
                self._present_view_url(view_url)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Could not present the view url", data={"error": str(exc)})
                recorder.warning("view-url", "Could not present the view url", str(exc))
        return view_url

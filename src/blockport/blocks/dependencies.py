"""Reconcile a block's package requirements with the host project.

The installer is split into a read-only :meth:`NpmDependencyInstaller.check`,
which compares the requirements with the host ``package.json``, and a mutating
:meth:`NpmDependencyInstaller.install`, which shells out to the package manager
for whatever is missing. Dry runs only ever call ``check``.
"""

from __future__ import annotations

import asyncio
import json
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Protocol

import httpx

from blockport.constants import MANIFEST_FILENAME, NPM_REGISTRIES, REGISTRY_PROBE_TIMEOUT
from blockport.core.exceptions import DependencyConflict, InstallFailed
from blockport.core.logging.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from blockport.blocks.manifest import BlockManifest

logger = get_logger(__name__)

_MAJOR_PATTERN = re.compile(r"^[\^~>=<v\s]*(\d+)(?:\.|$)")


@dataclass(frozen=True)
class Requirement:
    name: str
    spec: str
    dev: bool = False

    def __str__(self) -> str:
        return f"{self.name}@{self.spec}"


@dataclass(frozen=True)
class DependencyConflictInfo:
    requirement: Requirement
    project_spec: str

    def __str__(self) -> str:
        return (
            f"{self.requirement.name}: block requires {self.requirement.spec}, "
            f"project has {self.project_spec}"
        )


@dataclass(frozen=True)
class InstallPlan:
    lacks: tuple[Requirement, ...] = ()
    conflicts: tuple[DependencyConflictInfo, ...] = ()

    @property
    def dependencies(self) -> tuple[Requirement, ...]:
        return tuple(req for req in self.lacks if not req.dev)

    @property
    def dev_dependencies(self) -> tuple[Requirement, ...]:
        return tuple(req for req in self.lacks if req.dev)


@dataclass(frozen=True)
class InstallOptions:
    client: str
    registry_url: str
    project_root: Path


class DependencyInstaller(Protocol):
    def check(self, requirements: Sequence[Requirement], project_root: Path) -> InstallPlan: ...

    async def install(self, plan: InstallPlan, options: InstallOptions) -> None: ...


def collect_requirements(manifests: Iterable["BlockManifest"]) -> list[Requirement]:
    """Union of the requirements of every manifest; earlier manifests win on clashes."""
    merged: dict[tuple[str, bool], Requirement] = {}
    for manifest in manifests:
        for name, spec in manifest.dependencies:
            merged.setdefault((name, False), Requirement(name, spec))
        for name, spec in manifest.dev_dependencies:
            merged.setdefault((name, True), Requirement(name, spec, dev=True))
    return list(merged.values())


def major_version(spec: str) -> int | None:
    """Leading major version of a simple range, or None when it cannot be told."""
    if "||" in spec or " - " in spec:
        return None
    match = _MAJOR_PATTERN.match(spec.strip())
    return int(match.group(1)) if match else None


def ranges_compatible(project_spec: str, block_spec: str) -> bool:
    project_major = major_version(project_spec)
    block_major = major_version(block_spec)
    if project_major is None or block_major is None:
        return True
    return project_major == block_major


def detect_npm_client(project_root: Path, configured: str | None = None) -> str:
    if configured:
        return configured
    return "yarn" if (project_root / "yarn.lock").exists() else "npm"


async def find_fastest_registry(
    candidates: Sequence[str] = NPM_REGISTRIES,
    *,
    timeout: float = REGISTRY_PROBE_TIMEOUT,
) -> str:
    """Return the first registry that answers, falling back to the first candidate."""
    if not candidates:
        raise ValueError("No registry candidates")

    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:

        async def probe(url: str) -> str:
            response = await client.get(url)
            response.raise_for_status()
            return url

        pending = {asyncio.create_task(probe(url)) for url in candidates}
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task.exception() is None:
                        return task.result()
                    logger.debug(
                        "Registry probe failed",
                        data={"error": str(task.exception())},
                    )
        finally:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    return candidates[0]


class NpmDependencyInstaller:
    """Default installer driving npm-compatible clients (npm, yarn, cnpm, pnpm)."""

    def check(self, requirements: Sequence[Requirement], project_root: Path) -> InstallPlan:
        project_pkg_path = project_root / MANIFEST_FILENAME
        if not project_pkg_path.is_file():
            raise InstallFailed(f"No {MANIFEST_FILENAME} found in your project: {project_root}")
        try:
            project_pkg = json.loads(project_pkg_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise InstallFailed(f"Invalid {project_pkg_path}", str(exc)) from exc

        project_deps: dict[str, str] = project_pkg.get("dependencies") or {}
        # a dev requirement is satisfied by either section
        project_dev_deps = {**(project_pkg.get("devDependencies") or {}), **project_deps}

        lacks: list[Requirement] = []
        conflicts: list[DependencyConflictInfo] = []
        for requirement in requirements:
            installed = (project_dev_deps if requirement.dev else project_deps).get(
                requirement.name
            )
            if installed is None:
                lacks.append(requirement)
            elif not ranges_compatible(installed, requirement.spec):
                conflicts.append(DependencyConflictInfo(requirement, installed))

        plan = InstallPlan(lacks=tuple(lacks), conflicts=tuple(conflicts))
        if plan.conflicts:
            raise DependencyConflict(
                "Block dependencies conflict with the project",
                "\n".join(str(conflict) for conflict in plan.conflicts),
            )
        return plan

    async def install(self, plan: InstallPlan, options: InstallOptions) -> None:
        for requirements, dev in ((plan.dependencies, False), (plan.dev_dependencies, True)):
            if not requirements:
                continue
            args = self._install_args(options, [str(req) for req in requirements], dev=dev)
            logger.info("Installing block dependencies", data={"command": " ".join(args)})
            await asyncio.to_thread(self._run, args, options.project_root)

    @staticmethod
    def _install_args(options: InstallOptions, packages: list[str], *, dev: bool) -> list[str]:
        registry = f"--registry={options.registry_url}"
        if "yarn" in options.client:
            args = [options.client, "add", *packages]
            if dev:
                args.append("--dev")
            return [*args, registry]
        save_flag = "--save-dev" if dev else "--save"
        return [options.client, "install", *packages, save_flag, registry]

    @staticmethod
    def _run(args: list[str], cwd: Path) -> None:
        try:
            result = subprocess.run(args, cwd=cwd, capture_output=True, text=True, check=False)
        except OSError as exc:
            raise InstallFailed(f"Could not run {args[0]}", str(exc)) from exc
        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip()
            raise InstallFailed(f"Dependency install failed: {' '.join(args)}", detail)

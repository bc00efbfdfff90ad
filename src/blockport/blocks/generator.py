"""Place a block's files into the host project.

A page block is copied to ``<pages_dir><route>``. A component block is copied to
``<pages_dir><route>/<BlockFolderName>`` and later referenced from the container
``index`` file of ``<pages_dir><route>``.
"""

from __future__ import annotations

import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol

from blockport.constants import CONTAINER_INDEX_CANDIDATES, MANIFEST_FILENAME
from blockport.core.logging.logger import get_logger

logger = get_logger(__name__)

_IGNORED_NAMES = {MANIFEST_FILENAME, "node_modules", "package-lock.json", "yarn.lock"}

DEFAULT_CONTAINER_SOURCE = """import React from 'react';

export default () => (
  <div>
  </div>
);
"""


@dataclass(frozen=True)
class GeneratorOptions:
    source_path: Path
    path: str
    """Route path the block is generated under, always starting with ``/``."""
    block_name: str
    is_page_block: bool
    dry_run: bool
    project_root: Path
    pages_dir: Path


@dataclass(frozen=True)
class GenerationResult:
    path: str
    block_folder_name: str
    block_folder_path: Path
    entry_path: Path | None
    need_create_new_route: bool
    is_page_block: bool
    files: tuple[Path, ...] = field(default_factory=tuple)
    created_entry: bool = False


class BlockGenerator(Protocol):
    def run(self) -> GenerationResult: ...


GeneratorFactory = Callable[[GeneratorOptions], BlockGenerator]


def to_block_folder_name(block_name: str) -> str:
    """UpperCamelCase folder/component name: ``shared-ui`` -> ``SharedUi``."""
    words = [word for word in re.split(r"[^0-9a-zA-Z]+", block_name) if word]
    return "".join(word[0].upper() + word[1:] for word in words) or "Block"


def find_container_entry(folder: Path) -> Path | None:
    for candidate in CONTAINER_INDEX_CANDIDATES:
        entry = folder / candidate
        if entry.is_file():
            return entry
    return None


class FileBlockGenerator:
    """Copies the block's ``src`` folder (or the whole block) into the pages tree."""

    def __init__(self, options: GeneratorOptions) -> None:
        self.options = options

    def _source_root(self) -> Path:
        src = self.options.source_path / "src"
        return src if src.is_dir() else self.options.source_path

    def _plan(self, source_root: Path, target_root: Path) -> list[tuple[Path, Path]]:
        plan: list[tuple[Path, Path]] = []
        for path in sorted(source_root.rglob("*")):
            relative = path.relative_to(source_root)
            if any(part.startswith(".") or part in _IGNORED_NAMES for part in relative.parts):
                continue
            if path.is_file():
                plan.append((path, target_root / relative))
        return plan

    def run(self) -> GenerationResult:
        opts = self.options
        route_folder = opts.project_root / opts.pages_dir / opts.path.strip("/")
        folder_name = to_block_folder_name(opts.block_name)

        if opts.is_page_block:
            block_folder_path = route_folder
            need_create_new_route = not route_folder.exists()
        else:
            block_folder_path = route_folder / folder_name
            need_create_new_route = False

        plan = self._plan(self._source_root(), block_folder_path)
        if not plan:
            raise FileNotFoundError(f"No files to generate in {opts.source_path}")

        entry_path: Path | None
        created_entry = False
        if opts.is_page_block:
            entry_path = next(
                (
                    target
                    for _, target in plan
                    if target.parent == block_folder_path
                    and target.name in CONTAINER_INDEX_CANDIDATES
                ),
                None,
            )
        else:
            entry_path = find_container_entry(route_folder)
            if entry_path is None:
                entry_path = route_folder / "index.js"
                created_entry = True

        logger.debug(
            "Generating block",
            data={
                "block": opts.block_name,
                "target": str(block_folder_path),
                "files": len(plan),
                "dry_run": opts.dry_run,
            },
        )
        if not opts.dry_run:
            for source, target in plan:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
            if created_entry:
                entry_path.parent.mkdir(parents=True, exist_ok=True)
                entry_path.write_text(DEFAULT_CONTAINER_SOURCE, encoding="utf-8")

        return GenerationResult(
            path=opts.path,
            block_folder_name=folder_name,
            block_folder_path=block_folder_path,
            entry_path=entry_path,
            need_create_new_route=need_create_new_route,
            is_page_block=opts.is_page_block,
            files=tuple(target for _, target in plan),
            created_entry=created_entry,
        )

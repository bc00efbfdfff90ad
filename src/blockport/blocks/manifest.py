from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from blockport.constants import MANIFEST_FILENAME, PAGE_BLOCK_SPEC_VERSION
from blockport.core.exceptions import InvalidManifest, ManifestMissing
from blockport.core.logging.logger import get_logger

logger = get_logger(__name__)


class BlockConfigModel(BaseModel):
    spec_version: str | None = Field(default=None, alias="specVersion")
    dependencies: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("spec_version", mode="before")
    @classmethod
    def _coerce_spec_version(cls, value: object) -> object:
        # "specVersion": 0.1 is common in hand written manifests
        if isinstance(value, (int, float)):
            return str(value)
        return value


class BlockManifestModel(BaseModel):
    name: str | None = None
    block_config: BlockConfigModel | None = Field(default=None, alias="blockConfig")
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict, alias="devDependencies")

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


@dataclass(frozen=True)
class BlockManifest:
    """The parsed package descriptor of a block."""

    name: str
    path: Path
    spec_version: str | None = None
    sub_blocks: tuple[str, ...] = ()
    dependencies: tuple[tuple[str, str], ...] = ()
    dev_dependencies: tuple[tuple[str, str], ...] = ()

    @property
    def block_name(self) -> str:
        """The package name without its npm scope."""
        return get_block_name(self.name)

    @property
    def declares_page(self) -> bool:
        return self.spec_version == PAGE_BLOCK_SPEC_VERSION


def get_block_name(package_name: str) -> str:
    return package_name.rstrip("/").split("/")[-1]


def load_block_manifest(source_path: Path) -> BlockManifest:
    manifest_path = source_path / MANIFEST_FILENAME
    if not manifest_path.is_file():
        raise ManifestMissing(f"{MANIFEST_FILENAME} not found in {source_path}")

    try:
        payload = json.loads(manifest_path.read_text(encoding="utf-8"))
        model = BlockManifestModel.model_validate(payload)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise InvalidManifest(f"Invalid {MANIFEST_FILENAME} in {source_path}", str(exc)) from exc

    if not model.name or not get_block_name(model.name):
        raise InvalidManifest(f"No name found in the block's {MANIFEST_FILENAME}: {manifest_path}")

    block_config = model.block_config or BlockConfigModel()
    logger.debug(
        "Loaded block manifest",
        data={"name": model.name, "spec_version": block_config.spec_version},
    )
    return BlockManifest(
        name=model.name,
        path=manifest_path,
        spec_version=block_config.spec_version,
        sub_blocks=tuple(block_config.dependencies),
        dependencies=tuple(model.dependencies.items()),
        dev_dependencies=tuple(model.dev_dependencies.items()),
    )

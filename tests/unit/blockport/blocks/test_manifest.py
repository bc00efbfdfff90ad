from __future__ import annotations

import json

import pytest

from blockport.blocks.manifest import get_block_name, load_block_manifest
from blockport.core.exceptions import InvalidManifest, ManifestMissing


def _write_manifest(folder, payload) -> None:
    folder.mkdir(parents=True, exist_ok=True)
    (folder / "package.json").write_text(json.dumps(payload), encoding="utf-8")


def test_loads_page_block_with_sub_blocks(tmp_path) -> None:
    _write_manifest(
        tmp_path,
        {
            "name": "@umi-blocks/user-login",
            "blockConfig": {"specVersion": "0.1", "dependencies": ["./shared/header"]},
            "dependencies": {"antd": "^3.10.0"},
            "devDependencies": {"jest": "^24.0.0"},
        },
    )

    manifest = load_block_manifest(tmp_path)

    assert manifest.block_name == "user-login"
    assert manifest.declares_page is True
    assert manifest.sub_blocks == ("./shared/header",)
    assert manifest.dependencies == (("antd", "^3.10.0"),)
    assert manifest.dev_dependencies == (("jest", "^24.0.0"),)


def test_numeric_spec_version_is_accepted(tmp_path) -> None:
    _write_manifest(tmp_path, {"name": "demo", "blockConfig": {"specVersion": 0.1}})

    assert load_block_manifest(tmp_path).declares_page is True


def test_component_block_without_block_config(tmp_path) -> None:
    _write_manifest(tmp_path, {"name": "demo"})

    manifest = load_block_manifest(tmp_path)

    assert manifest.declares_page is False
    assert manifest.sub_blocks == ()


def test_missing_manifest(tmp_path) -> None:
    with pytest.raises(ManifestMissing):
        load_block_manifest(tmp_path)


def test_manifest_without_name(tmp_path) -> None:
    _write_manifest(tmp_path, {"version": "1.0.0"})

    with pytest.raises(InvalidManifest):
        load_block_manifest(tmp_path)


def test_manifest_with_broken_json(tmp_path) -> None:
    (tmp_path / "package.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(InvalidManifest):
        load_block_manifest(tmp_path)


@pytest.mark.parametrize(
    ("package_name", "expected"),
    [("demo", "demo"), ("@scope/demo", "demo"), ("a/b/c", "c")],
)
def test_get_block_name(package_name: str, expected: str) -> None:
    assert get_block_name(package_name) == expected

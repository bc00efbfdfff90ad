from __future__ import annotations

import asyncio
import json
import subprocess
from pathlib import Path

import httpx
import pytest

from blockport.blocks import dependencies
from blockport.blocks.dependencies import (
    InstallOptions,
    NpmDependencyInstaller,
    Requirement,
    collect_requirements,
    detect_npm_client,
    find_fastest_registry,
    major_version,
    ranges_compatible,
)
from blockport.blocks.manifest import BlockManifest
from blockport.core.exceptions import DependencyConflict, InstallFailed


def _project(tmp_path: Path, deps=None, dev_deps=None) -> Path:
    payload = {"name": "host", "dependencies": deps or {}, "devDependencies": dev_deps or {}}
    (tmp_path / "package.json").write_text(json.dumps(payload), encoding="utf-8")
    return tmp_path


def test_collect_requirements_prefers_first_manifest() -> None:
    parent = BlockManifest(
        name="parent", path=Path("p"), dependencies=(("antd", "^3.0.0"),)
    )
    child = BlockManifest(
        name="child",
        path=Path("c"),
        dependencies=(("antd", "^4.0.0"), ("moment", "^2.0.0")),
        dev_dependencies=(("jest", "^24.0.0"),),
    )

    requirements = collect_requirements([parent, child])

    assert Requirement("antd", "^3.0.0") in requirements
    assert Requirement("moment", "^2.0.0") in requirements
    assert Requirement("jest", "^24.0.0", dev=True) in requirements
    assert len(requirements) == 3


@pytest.mark.parametrize(
    ("spec", "expected"),
    [("^3.10.0", 3), ("~2.1", 2), (">=16", 16), ("1.x", 1), ("latest", None), ("1 || 2", None)],
)
def test_major_version(spec: str, expected: int | None) -> None:
    assert major_version(spec) == expected


def test_ranges_compatible() -> None:
    assert ranges_compatible("^3.1.0", "^3.10.0")
    assert not ranges_compatible("^3.1.0", "^4.0.0")
    assert ranges_compatible("latest", "^4.0.0")


def test_check_reports_lacking_requirements(tmp_path) -> None:
    root = _project(tmp_path, deps={"react": "^16.8.0"}, dev_deps={"jest": "^24.0.0"})

    plan = NpmDependencyInstaller().check(
        [
            Requirement("react", "^16.0.0"),
            Requirement("antd", "^3.10.0"),
            Requirement("jest", "^24.1.0", dev=True),
            Requirement("eslint", "^5.0.0", dev=True),
        ],
        root,
    )

    assert plan.dependencies == (Requirement("antd", "^3.10.0"),)
    assert plan.dev_dependencies == (Requirement("eslint", "^5.0.0", dev=True),)
    assert plan.conflicts == ()


def test_check_raises_on_major_conflict(tmp_path) -> None:
    root = _project(tmp_path, deps={"antd": "^3.0.0", "react": "^15.0.0"})

    with pytest.raises(DependencyConflict) as excinfo:
        NpmDependencyInstaller().check(
            [Requirement("antd", "^4.0.0"), Requirement("react", "^16.0.0")], root
        )

    assert "antd" in excinfo.value.details
    assert "react" in excinfo.value.details


def test_check_requires_host_package_json(tmp_path) -> None:
    with pytest.raises(InstallFailed):
        NpmDependencyInstaller().check([Requirement("antd", "^3.0.0")], tmp_path)


def test_detect_npm_client(tmp_path) -> None:
    assert detect_npm_client(tmp_path) == "npm"
    (tmp_path / "yarn.lock").write_text("", encoding="utf-8")
    assert detect_npm_client(tmp_path) == "yarn"
    assert detect_npm_client(tmp_path, "pnpm") == "pnpm"


@pytest.mark.asyncio
async def test_install_runs_client_per_dependency_section(tmp_path, monkeypatch) -> None:
    calls: list[tuple[list[str], Path]] = []

    def fake_run(args, cwd=None, **kwargs):
        calls.append((args, cwd))
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

    monkeypatch.setattr(dependencies.subprocess, "run", fake_run)
    installer = NpmDependencyInstaller()
    plan = installer.check(
        [Requirement("antd", "^3.10.0"), Requirement("jest", "^24.0.0", dev=True)],
        _project(tmp_path),
    )

    await installer.install(
        plan, InstallOptions(client="yarn", registry_url="https://r.example", project_root=tmp_path)
    )

    assert [args for args, _ in calls] == [
        ["yarn", "add", "antd@^3.10.0", "--registry=https://r.example"],
        ["yarn", "add", "jest@^24.0.0", "--dev", "--registry=https://r.example"],
    ]
    assert all(cwd == tmp_path for _, cwd in calls)


@pytest.mark.asyncio
async def test_install_failure_raises(tmp_path, monkeypatch) -> None:
    def fake_run(args, cwd=None, **kwargs):
        return subprocess.CompletedProcess(args, 1, stdout="", stderr="ERR! 404")

    monkeypatch.setattr(dependencies.subprocess, "run", fake_run)
    installer = NpmDependencyInstaller()
    plan = installer.check([Requirement("nope", "^1.0.0")], _project(tmp_path))

    with pytest.raises(InstallFailed) as excinfo:
        await installer.install(
            plan, InstallOptions(client="npm", registry_url="https://r", project_root=tmp_path)
        )

    assert excinfo.value.details == "ERR! 404"


def _patch_async_client(monkeypatch, handler) -> None:
    real_client = httpx.AsyncClient

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(*args, **kwargs)

    monkeypatch.setattr(dependencies.httpx, "AsyncClient", factory)


@pytest.mark.asyncio
async def test_find_fastest_registry_skips_failing_probe(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "down.example":
            return httpx.Response(503)
        return httpx.Response(200, json={})

    _patch_async_client(monkeypatch, handler)

    registry = await find_fastest_registry(["https://down.example", "https://up.example"])

    assert registry == "https://up.example"


@pytest.mark.asyncio
async def test_find_fastest_registry_falls_back_to_first(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    _patch_async_client(monkeypatch, handler)

    registry = await find_fastest_registry(["https://a.example", "https://b.example"])

    assert registry == "https://a.example"


@pytest.mark.asyncio
async def test_find_fastest_registry_cancels_slower_requests(monkeypatch) -> None:
    cancelled: list[str] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "slow.example":
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(request.url.host)
                raise
        return httpx.Response(200, json={})

    _patch_async_client(monkeypatch, handler)

    registry = await find_fastest_registry(["https://slow.example", "https://fast.example"])

    assert registry == "https://fast.example"
    assert cancelled == ["slow.example"]

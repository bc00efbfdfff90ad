from __future__ import annotations

import pytest

import blockport.config as config_module


@pytest.fixture(autouse=True)
def isolate_settings(tmp_path, monkeypatch):
    """Keep unit tests away from the real block cache and any project config file.

    The staging directory is pointed at a per-test temporary path and cached
    global settings are reset so nothing leaks between tests.
    """

    original_settings = getattr(config_module, "_settings", None)
    monkeypatch.setenv("BLOCKPORT_BLOCK__STAGING_DIR", str(tmp_path / ".blockport-test-cache"))
    monkeypatch.delenv("PORT", raising=False)
    config_module._settings = None

    try:
        yield
    finally:
        config_module._settings = original_settings

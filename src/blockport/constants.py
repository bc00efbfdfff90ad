"""
Global constants for blockport with minimal dependencies to avoid circular imports.
"""

from pathlib import Path

MANIFEST_FILENAME = "package.json"
"""Package descriptor read from the root of every block source."""

PAGE_BLOCK_SPEC_VERSION = "0.1"
"""``blockConfig.specVersion`` value that marks a block as a routed page."""

DEFAULT_GIT_URL = "https://github.com/umijs/umi-blocks"
"""Repository used to expand shorthand block names such as ``demo``."""

DEFAULT_BRANCH = "master"

DEFAULT_STAGING_DIR = Path("~/.blockport/blocks")
"""Shared cache holding one checkout per source id."""

DEFAULT_ROUTES_FILE = Path("config/routes.yaml")
DEFAULT_PAGES_DIR = Path("src/pages")

DEFAULT_VIEW_PORT = 8000
"""Port used for the advisory view URL when neither PORT nor config set one."""

DEFAULT_CONFIG_FILENAME = "blockport.config.yaml"

CONTAINER_INDEX_CANDIDATES = ("index.tsx", "index.jsx", "index.ts", "index.js")

NPM_REGISTRIES = (
    "https://registry.npmjs.org",
    "https://registry.npmmirror.com",
    "https://registry.yarnpkg.com",
)
"""Candidates probed when no registry is configured; the first is the fallback."""

REGISTRY_PROBE_TIMEOUT = 5.0

"""Turn a user supplied block locator into an acquisition context.

Three locator forms are understood:

- git urls (``https://``, ``http://``, ``ssh://``, ``git://`` or ``git@host:org/repo``),
  optionally pointing into the repository with ``/tree/<ref>/<path>``;
- shorthand names such as ``demo`` or ``templates/user-login``, expanded against
  the configured default git url;
- local paths starting with ``.``, ``/``, ``~`` or a drive letter.

Resolution performs no network access; the only I/O is checking whether the
staging directory of a remote source is already populated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from blockport.constants import DEFAULT_BRANCH, DEFAULT_GIT_URL
from blockport.core.exceptions import InvalidSource
from blockport.core.logging.logger import get_logger

if TYPE_CHECKING:
    from blockport.blocks.cache import CacheStore
    from blockport.blocks.manifest import BlockManifest

logger = get_logger(__name__)

_GIT_URL_PATTERN = re.compile(r"^(?:https?|ssh|git)://|^[\w.-]+@[\w.-]+:")
_SHORTHAND_PATTERN = re.compile(r"^\w+[\w\-/]*$")
_LOCAL_PATH_PATTERN = re.compile(r"^[./~]|^[a-zA-Z]:")
_SCP_PATTERN = re.compile(r"^(?P<user>[\w.-]+)@(?P<host>[\w.-]+):(?P<path>.+)$")

_CACHE_FIELDS = frozenset({"source_id", "repo", "branch", "staging_root", "staging_dir"})


@dataclass(frozen=True)
class ParsedGitSource:
    """A remote locator split into the parts the cache and git client need."""

    repo: str
    branch: str
    path: str
    source_id: str


@dataclass
class AcquisitionContext:
    """Where a block's files live and where they are staged.

    Created per invocation by :func:`resolve_acquisition_context` and enriched in
    place as the pipeline progresses. ``is_local`` cannot change once set, and a
    local context never carries git or cache fields.
    """

    source_locator: str
    is_local: bool
    source_path: Path
    template_dir: Path
    source_id: str | None = None
    repo: str | None = None
    branch: str | None = None
    path_in_repo: str = "/"
    staging_root: Path | None = None
    staging_dir: Path | None = None
    repo_exists: bool = False
    manifest: "BlockManifest | None" = None
    route_path: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "is_local" and "is_local" in self.__dict__:
            if value != self.__dict__["is_local"]:
                raise AttributeError("is_local cannot change once the context is created")
        if name in _CACHE_FIELDS and self.__dict__.get("is_local") and value is not None:
            raise AttributeError(f"{name} is not available on a local source")
        super().__setattr__(name, value)


def is_git_url(locator: str) -> bool:
    return bool(_GIT_URL_PATTERN.match(locator))


def parse_git_url(url: str) -> ParsedGitSource:
    """Split a git url into clone url, ref, path within the repository and cache id.

    ``https://github.com/org/blocks/tree/main/templates/demo`` becomes repo
    ``https://github.com/org/blocks.git``, branch ``main``, path
    ``/templates/demo`` and source id ``github.com/org/blocks``.
    """
    scp = _SCP_PATTERN.match(url)
    if scp:
        host = scp.group("host")
        parts = [part for part in scp.group("path").split("/") if part]
        scheme = None
        user = scp.group("user")
    else:
        parsed = urlparse(url)
        host = parsed.hostname or ""
        parts = [part for part in parsed.path.split("/") if part]
        scheme = parsed.scheme
        user = parsed.username

    if not host or len(parts) < 2:
        raise InvalidSource(f"Unsupported url type: {url}", "Expected <host>/<org>/<repo>.")

    org = parts[0]
    name = parts[1].removesuffix(".git")
    if org in {".", ".."} or name in {"", ".", ".."}:
        raise InvalidSource(f"Unsupported url type: {url}", "Expected <host>/<org>/<repo>.")

    ref: str | None = None
    filepath: list[str] = []
    if len(parts) >= 4 and parts[2] in {"tree", "blob"}:
        ref = parts[3]
        filepath = parts[4:]
    elif len(parts) > 2:
        filepath = parts[2:]

    if ".." in filepath:
        raise InvalidSource(f"Block path escapes the repository: {url}")

    if scheme in {"http", "https"}:
        repo = f"{scheme}://{host}/{org}/{name}.git"
    elif scheme in {"ssh", "git"}:
        prefix = f"{user}@" if user else ""
        repo = f"{scheme}://{prefix}{host}/{org}/{name}.git"
    else:
        repo = f"{user}@{host}:{org}/{name}.git"

    return ParsedGitSource(
        repo=repo,
        branch=ref or DEFAULT_BRANCH,
        path="/" + "/".join(filepath),
        source_id=f"{host}/{org}/{name}",
    )


def parse_source_locator(
    locator: str,
    *,
    default_git_url: str = DEFAULT_GIT_URL,
    cwd: Path | None = None,
) -> ParsedGitSource | Path:
    """Classify a locator; returns the parsed git source or the resolved local path."""
    locator = locator.strip()
    if not locator:
        raise InvalidSource(
            "Empty block url", "Run `blockport block add --help` to check the usage."
        )

    if is_git_url(locator):
        logger.debug("Locator is a git url", data={"url": locator})
        return parse_git_url(locator)

    if _SHORTHAND_PATTERN.match(locator):
        real_url = f"{default_git_url.rstrip('/')}/tree/{DEFAULT_BRANCH}/{locator}"
        logger.debug("Expanded shorthand locator", data={"url": real_url})
        return parse_git_url(real_url)

    if _LOCAL_PATH_PATTERN.match(locator):
        path = Path(locator).expanduser()
        if not path.is_absolute():
            path = (cwd or Path.cwd()) / path
        return path.resolve()

    raise InvalidSource(f"Unsupported url type: {locator}")


def resolve_acquisition_context(
    locator: str,
    *,
    cache_store: "CacheStore",
    branch: str | None = None,
    default_git_url: str = DEFAULT_GIT_URL,
    cwd: Path | None = None,
) -> AcquisitionContext:
    """Build the acquisition context for one invocation.

    An explicit ``branch`` overrides whatever ref the locator encodes.
    """
    parsed = parse_source_locator(locator, default_git_url=default_git_url, cwd=cwd)

    if isinstance(parsed, Path):
        return AcquisitionContext(
            source_locator=locator,
            is_local=True,
            source_path=parsed,
            template_dir=parsed.parent,
        )

    entry = cache_store.resolve(parsed.source_id)
    relative = PurePosixPath(parsed.path.lstrip("/"))
    source_path = entry.path.joinpath(*relative.parts) if relative.parts else entry.path
    return AcquisitionContext(
        source_locator=locator,
        is_local=False,
        source_path=source_path,
        template_dir=entry.path,
        source_id=parsed.source_id,
        repo=parsed.repo,
        branch=branch or parsed.branch,
        path_in_repo=parsed.path,
        staging_root=cache_store.root,
        staging_dir=entry.path,
        repo_exists=entry.exists,
    )

"""Host project writers: route configuration and container imports.

Both operations are idempotent. Writing a route that is already present, or
appending a block that a container already references, leaves the file as is.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Protocol

import yaml

from blockport.core.exceptions import ContainerWriteFailed, RouteWriteFailed
from blockport.core.logging.logger import get_logger

logger = get_logger(__name__)

RouteDescriptor = dict[str, Any]

_IMPORT_LINE = re.compile(r"^\s*import\b|^\s*}\s*from\s+['\"]")
_CLOSING_TAG = re.compile(r"</[\w.]*>")


def build_route_descriptor(route_path: str, *, is_layout: bool = False) -> RouteDescriptor:
    route: RouteDescriptor = {"path": route_path.lower(), "component": f".{route_path}"}
    if is_layout:
        route["routes"] = []
    return route


def _load_routes_document(routes_file: Path) -> Any:
    text = routes_file.read_text(encoding="utf-8")
    if routes_file.suffix == ".json":
        return json.loads(text) if text.strip() else []
    return yaml.safe_load(text) or []


def _dump_routes_document(routes_file: Path, document: Any) -> None:
    if routes_file.suffix == ".json":
        content = json.dumps(document, indent=2, ensure_ascii=False) + "\n"
    else:
        content = yaml.safe_dump(document, sort_keys=False, allow_unicode=True)
    routes_file.write_text(content, encoding="utf-8")


def _route_list(document: Any) -> list[RouteDescriptor]:
    if isinstance(document, list):
        return document
    if isinstance(document, dict):
        routes = document.setdefault("routes", [])
        if isinstance(routes, list):
            return routes
    raise RouteWriteFailed("Routes file must hold a list of routes or a 'routes' list")


def _iter_routes(routes: list[RouteDescriptor]):
    for route in routes:
        if not isinstance(route, dict):
            continue
        yield route
        children = route.get("routes")
        if isinstance(children, list):
            yield from _iter_routes(children)


def _is_parent_path(parent: str, child: str) -> bool:
    if parent == "/":
        return True
    return child.startswith(parent.rstrip("/") + "/")


def _find_insert_target(routes: list[RouteDescriptor], path: str) -> list[RouteDescriptor]:
    best: tuple[int, list[RouteDescriptor]] = (-1, routes)
    for route in routes:
        if not isinstance(route, dict):
            continue
        children = route.get("routes")
        route_path = route.get("path")
        if not isinstance(children, list) or not isinstance(route_path, str):
            continue
        if _is_parent_path(route_path, path) and len(route_path) > best[0]:
            best = (len(route_path), _find_insert_target(children, path))
    return best[1]


def insert_route(routes: list[RouteDescriptor], new_route: RouteDescriptor) -> bool:
    """Insert ``new_route`` under the deepest matching parent. Returns False if present."""
    path = new_route["path"]
    for route in _iter_routes(routes):
        if route.get("path") != path:
            continue
        if route.get("component") == new_route.get("component"):
            return False
        raise RouteWriteFailed(
            f"Route path '{path}' already exists",
            f"Existing component: {route.get('component')}",
        )
    _find_insert_target(routes, path).insert(0, new_route)
    return True


def write_route(route: RouteDescriptor, routes_file: Path) -> bool:
    """Add ``route`` to the host route configuration. Returns True when the file changed."""
    try:
        document = _load_routes_document(routes_file)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise RouteWriteFailed(f"Could not read routes file {routes_file}", str(exc)) from exc

    if not insert_route(_route_list(document), route):
        logger.info("Route already present", data={"path": route["path"]})
        return False

    try:
        _dump_routes_document(routes_file, document)
    except OSError as exc:
        raise RouteWriteFailed(f"Could not write routes file {routes_file}", str(exc)) from exc
    logger.info("Wrote route", data={"path": route["path"], "file": str(routes_file)})
    return True


def _last_import_index(lines: list[str]) -> int:
    last = -1
    for index, line in enumerate(lines):
        if _IMPORT_LINE.match(line):
            last = index
    return last


def add_block_to_source(source: str, block_folder_name: str) -> str:
    """Return ``source`` with an import of the block and one usage of it in the markup."""
    name = block_folder_name
    lines = source.splitlines(keepends=True)

    escaped = re.escape(name)
    import_pattern = re.compile(rf"^\s*import\s+{escaped}\s+from\s+['\"]\./{escaped}['\"]", re.M)
    if not import_pattern.search(source):
        insert_at = _last_import_index(lines) + 1
        lines.insert(insert_at, f"import {name} from './{name}';\n")

    updated = "".join(lines)
    if re.search(rf"<{re.escape(name)}\s*/>", updated):
        return updated

    closing = list(_CLOSING_TAG.finditer(updated))
    if not closing:
        raise ContainerWriteFailed(f"No JSX element found to add <{name} /> to")
    tag = closing[-1]
    line_start = updated.rfind("\n", 0, tag.start()) + 1
    prefix = updated[line_start : tag.start()]
    if prefix.strip():
        return f"{updated[: tag.start()]}<{name} />{updated[tag.start():]}"
    return f"{updated[:line_start]}{prefix}  <{name} />\n{updated[line_start:]}"


def append_import(container_file: Path, block_folder_name: str) -> bool:
    """Reference the block from its container file. Returns True when the file changed."""
    try:
        source = container_file.read_text(encoding="utf-8")
    except OSError as exc:
        raise ContainerWriteFailed(f"Could not read container {container_file}", str(exc)) from exc

    updated = add_block_to_source(source, block_folder_name)
    if updated == source:
        return False
    try:
        container_file.write_text(updated, encoding="utf-8")
    except OSError as exc:
        raise ContainerWriteFailed(f"Could not write container {container_file}", str(exc)) from exc
    logger.info(
        "Added block to container",
        data={"block": block_folder_name, "container": str(container_file)},
    )
    return True


class HostProjectWriter(Protocol):
    def write_route(self, route: RouteDescriptor, routes_file: Path) -> bool: ...

    def append_import(self, container_file: Path, block_folder_name: str) -> bool: ...


class FileHostWriter:
    """Writes straight to the host project's files."""

    def write_route(self, route: RouteDescriptor, routes_file: Path) -> bool:
        return write_route(route, routes_file)

    def append_import(self, container_file: Path, block_folder_name: str) -> bool:
        return append_import(container_file, block_folder_name)

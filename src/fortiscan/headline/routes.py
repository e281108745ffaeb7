"""Route file validation: structure plus route id uniqueness."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, StrictStr, StringConstraints, ValidationError

from fortiscan.exceptions import DuplicateRouteIdError, RouteFileError

RouteText = Annotated[StrictStr, StringConstraints(min_length=1)]


class RouteNode(BaseModel):
    """One route; any keys beyond these are left to the host."""

    model_config = ConfigDict(extra="allow")

    id: RouteText
    desc: RouteText
    type: str | None = None
    routes: list[RouteNode] | None = None


class RouteFile(BaseModel):
    model_config = ConfigDict(extra="allow")

    routes: list[RouteNode]


class RouteIdRegistry:
    """Route ids seen so far across every route file of one plugin."""

    def __init__(self) -> None:
        self._seen: dict[str, tuple[str, str]] = {}

    def register(self, route_id: str, file: str, json_path: str = "") -> None:
        route_id = route_id.strip()
        if not route_id:
            return
        if route_id in self._seen:
            first_file, first_path = self._seen[route_id]
            raise DuplicateRouteIdError(
                route_id,
                f"{first_file} {first_path}".strip(),
                f"{file} {json_path}".strip(),
            )
        self._seen[route_id] = (file, json_path)

    def __contains__(self, route_id: str) -> bool:
        return route_id.strip() in self._seen

    def __len__(self) -> int:
        return len(self._seen)


class RouteFileValidator:
    def __init__(self, registry: RouteIdRegistry | None = None) -> None:
        self.registry = registry if registry is not None else RouteIdRegistry()

    def validate_file(self, path: str | Path) -> None:
        file = str(path)
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except OSError as e:
            raise RouteFileError(f"Cannot read route file: {file}") from e
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise RouteFileError(f"Invalid JSON in route file {file}: {e}") from e
        self.validate(data, file)

    def validate(self, data: Any, file: str) -> None:
        """Check ``data`` and register its ids; raises on the first problem."""
        if not isinstance(data, dict) or not isinstance(data.get("routes"), list):
            raise RouteFileError(f"Invalid route file (missing 'routes' array): {file}")
        try:
            parsed = RouteFile.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            raise RouteFileError(
                f"Route at {file} {_node_path(first['loc'])} missing required 'id'/'desc'.",
                {"message": first["msg"]},
            ) from e

        local: dict[str, str] = {}
        pending = [(node, f"/routes[{i}]") for i, node in enumerate(parsed.routes)]
        while pending:
            node, path = pending.pop(0)
            if node.id in local:
                raise RouteFileError(
                    f"Duplicate route id '{node.id}' within the same file.\n"
                    f" - First at: {file} {local[node.id]}\n"
                    f" - Again at: {file} {path}",
                    {"id": node.id},
                )
            local[node.id] = path
            self.registry.register(node.id, file, path)

            if node.type == "group" and node.routes:
                pending[:0] = [(child, f"{path}/routes[{i}]") for i, child in enumerate(node.routes)]


def _node_path(loc: tuple) -> str:
    """``('routes', 0, 'routes', 2, 'id')`` becomes ``/routes[0]/routes[2]``."""
    path = ""
    parts = list(loc)
    for key, index in zip(parts, parts[1:]):
        if key == "routes" and isinstance(index, int):
            path += f"/routes[{index}]"
    return path or "/routes"

from __future__ import annotations

from collections.abc import Collection

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response


def _is_allowed_origin(origin: str | None, allowed_origins: Collection[str]) -> bool:
    return bool(origin and origin in allowed_origins)


def apply_cors_response(
    request: Request,
    response: Response,
    allowed_origins: Collection[str],
) -> Response:
    origin = request.headers.get("origin")
    if _is_allowed_origin(origin, allowed_origins):
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
        response.headers["Vary"] = "Origin"
    return response


def cors_preflight_response(request: Request, allowed_origins: Collection[str]) -> Response:
    return apply_cors_response(request, Response(status_code=204), allowed_origins)


def mount_preflight_route(app: Starlette, path: str, allowed_origins: Collection[str]) -> None:
    async def preflight_route(request: Request) -> Response:
        return cors_preflight_response(request, allowed_origins)

    app.add_route(path, preflight_route, methods=["OPTIONS"])


def cors_json_response(
    request: Request,
    allowed_origins: Collection[str],
    payload: dict,
    status_code: int = 200,
    headers: dict[str, str] | None = None,
) -> Response:
    return apply_cors_response(
        request,
        JSONResponse(payload, status_code=status_code, headers=headers),
        allowed_origins,
    )


def cors_error_response(
    request: Request,
    allowed_origins: Collection[str],
    code: str,
    description: str,
    status_code: int,
) -> Response:
    return cors_json_response(
        request,
        allowed_origins,
        {"error": code, "error_description": description},
        status_code=status_code,
    )

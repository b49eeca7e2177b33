"""Liveness and readiness endpoints."""

from fastapi import APIRouter, Request

health_router = APIRouter()


@health_router.get("/", summary="Readiness probe", tags=["health"])
async def healthcheck(request: Request) -> dict[str, object]:
    """Report readiness once the schema has been migrated."""

    schema_version = getattr(request.app.state, "schema_version", None)
    return {"status": "ok" if schema_version else "starting", "schema_version": schema_version}

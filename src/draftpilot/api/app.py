from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from draftpilot.api.deps import get_registry
from draftpilot.api.routes import router as api_router
from draftpilot.config import get_settings


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(title=settings.app_name)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        registry = app.dependency_overrides.get(get_registry, get_registry)()
        await registry.close_all()

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok", "env": settings.app_env})

    app.include_router(api_router)
    return app

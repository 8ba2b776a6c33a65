from __future__ import annotations

import contextlib

from fastapi import FastAPI

from persistence.repositories import AsyncDatabaseService, AsyncMongoDatabaseService


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    store: AsyncDatabaseService = app.state.store

    # Fatal on failure: connect() exits the process.
    scope = await store.connect()
    app.state.scope = scope
    try:
        yield
    finally:
        await store.disconnect(scope)

def create_app(store: AsyncDatabaseService | None = None) -> FastAPI:
    from endpoints.db_endpoints import router as db_router

    app = FastAPI(lifespan=lifespan)
    app.state.store = store if store is not None else AsyncMongoDatabaseService()

    @app.get("/healthz")
    async def healthz():
        scope = getattr(app.state, "scope", None)
        return {"status": "ok" if scope is not None and not scope.cancelled else "down"}

    app.include_router(db_router)

    return app

app = create_app()

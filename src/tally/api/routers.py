from fastapi import FastAPI

from tally.admin.api import router as admin_router
from tally.auth.api import router as auth_router
from tally.counter.api import router as counter_router
from tally.debug.api import router as debug_router
from tally.health.api import router as health_router


def configure_routers(app: FastAPI) -> FastAPI:
    app.include_router(admin_router)
    app.include_router(auth_router)
    app.include_router(counter_router)
    app.include_router(debug_router)
    app.include_router(health_router)
    return app

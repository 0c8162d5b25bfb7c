from fastapi import APIRouter

from kpi_tracker.api.routes import departments, metrics, targets

api_router = APIRouter()
api_router.include_router(departments.router)
api_router.include_router(metrics.router)
api_router.include_router(targets.router)

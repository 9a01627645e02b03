"""API routes."""

from settlement_engine.api.routes.health import router as health_router
from settlement_engine.api.routes.obligations import router as obligations_router
from settlement_engine.api.routes.payees import router as payees_router
from settlement_engine.api.routes.settlements import router as settlements_router

__all__ = ["health_router", "obligations_router", "payees_router", "settlements_router"]

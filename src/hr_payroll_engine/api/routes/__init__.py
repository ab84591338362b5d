"""API routes."""

from hr_payroll_engine.api.routes.benefits import router as benefits_router
from hr_payroll_engine.api.routes.health import router as health_router
from hr_payroll_engine.api.routes.payroll import router as payroll_router

__all__ = ["benefits_router", "health_router", "payroll_router"]

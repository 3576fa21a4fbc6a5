from .dlq import router as dlq_router
from .health import router as health_router

__all__ = ["dlq_router", "health_router"]

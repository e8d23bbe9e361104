from .users_router import router as users_router
from .opcua_router import router as opcua_router
from .reports_router import router as reports_router
from .data_router import router as data_router

__all__ = [
    "users_router",
    "opcua_router",
    "reports_router",
    "data_router",
]

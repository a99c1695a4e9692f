from .dashboard_api import router as dashboard_api_router
from .inventory_api import router as inventory_api_router
from .loans_api import router as loans_api_router
from .people_api import router as people_api_router

ALL_ROUTERS = (
    people_api_router,
    inventory_api_router,
    loans_api_router,
    dashboard_api_router,
)

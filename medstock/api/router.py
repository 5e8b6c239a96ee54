# medstock/api/router.py
from fastapi import APIRouter
from medstock.api import (
    routes_catalog,
    routes_receiving,
    routes_stock,
)

api_router = APIRouter()

api_router.include_router(routes_catalog.router)
api_router.include_router(routes_receiving.router)
api_router.include_router(routes_stock.router)

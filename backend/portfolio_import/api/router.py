from fastapi import APIRouter
from portfolio_import.api.routers import imports

api_router = APIRouter()
api_router.include_router(imports.router, prefix="/imports", tags=["imports"])

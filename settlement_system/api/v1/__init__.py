"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import settlements, payments

api_router = APIRouter()

api_router.include_router(
    settlements.router,
    prefix="/settlements",
    tags=["settlements"]
)

api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["payments"]
)

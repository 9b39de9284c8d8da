"""V1 API router"""
from fastapi import APIRouter

from medcure.api.api_v1.endpoints import products, batches, sales

api_router = APIRouter()

api_router.include_router(products.router, prefix="/products", tags=["Products"])
api_router.include_router(batches.router, prefix="/batches", tags=["Stock batches"])
api_router.include_router(sales.router, prefix="/sales", tags=["Sales"])

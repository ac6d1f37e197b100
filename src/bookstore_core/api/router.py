from fastapi import APIRouter

from .routes import books, cart, health, orders, promotions, stores, warehouses

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(books.router)
api_router.include_router(cart.router)
api_router.include_router(orders.router)
api_router.include_router(stores.router)
api_router.include_router(warehouses.router)
api_router.include_router(promotions.router)

from __future__ import annotations

from fastapi import APIRouter

from api.routes import clicks, drops, health, leaderboards, ledger, participations, reviews


def get_api_router() -> APIRouter:
    router = APIRouter()

    router.include_router(health.router, tags=["health"])
    router.include_router(clicks.router, tags=["clicks"])
    router.include_router(participations.router, tags=["participations"])
    router.include_router(leaderboards.router, tags=["leaderboards"])
    router.include_router(ledger.router, tags=["ledger"])
    router.include_router(drops.router, tags=["drops"])
    router.include_router(reviews.router, tags=["reviews"])

    return router

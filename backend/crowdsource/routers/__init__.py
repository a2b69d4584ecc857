"""Crowdsource Engine - API Routers"""
from .problems import router as problems_router
from .geo import router as geo_router
from .leaderboard import router as leaderboard_router
from .webhook import router as webhook_router
from .internal import router as internal_router

__all__ = [
    "problems_router",
    "geo_router",
    "leaderboard_router",
    "webhook_router",
    "internal_router",
]

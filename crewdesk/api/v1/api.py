"""
V1 API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from crewdesk.api.v1.endpoints import (attendance, auth, health, permissions,
                                       roles, team, users)

api_router = APIRouter()

# Auth (login, refresh, user management)
api_router.include_router(auth.router)

# Own check-in/out, history, stats
api_router.include_router(attendance.router)

# Exceptions, team analytics, adjustments, audit log
api_router.include_router(team.router)

# Permission catalogue, matrix, roles, per-user lookups
api_router.include_router(permissions.router)
api_router.include_router(roles.router)
api_router.include_router(users.router)

api_router.include_router(health.router)

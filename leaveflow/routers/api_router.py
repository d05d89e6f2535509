from fastapi import APIRouter
from leaveflow.routers import leave, workflows

# Routers are aggregated here; main.py only imports this hub.
api_router = APIRouter()

api_router.include_router(leave.router, tags=["Leave"])
api_router.include_router(workflows.router, tags=["Approval Workflows"])

"""API Routes Module."""

from fastapi import APIRouter

from harmony.api import activities, admin, devices, iot, scan, workspaces

router = APIRouter()

router.include_router(scan.router, tags=["Scan"])
router.include_router(activities.router, prefix="/workspaces", tags=["Activities"])
router.include_router(devices.workspace_router, prefix="/workspaces", tags=["Devices"])
router.include_router(workspaces.router, prefix="/workspaces", tags=["Workspaces"])
router.include_router(devices.router, prefix="/devices", tags=["Devices"])
router.include_router(admin.router, prefix="/admin", tags=["Admin"])
router.include_router(iot.router, prefix="/iot", tags=["IoT"])

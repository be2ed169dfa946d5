from fastapi import APIRouter

from verifier.api.v1 import admin, audit, verification

api_router = APIRouter()

api_router.include_router(verification.router, prefix="/verification", tags=["verification"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(audit.router, prefix="/audit", tags=["audit"])

# src/router/routers.py

from fastapi import FastAPI
from src.auth.auth_controller import router as auth_router
from src.auth.otp_controller import router as otp_router
from src.modules.activity_logs.activity_logs_controller import router as activity_logs_router
from src.modules.audit_logs.audit_logs_controller import router as audit_logs_router

def include_routers(app: FastAPI) -> None:
    """Include all API routers in the FastAPI application."""
    app.include_router(auth_router)
    app.include_router(otp_router)
    app.include_router(activity_logs_router)
    app.include_router(audit_logs_router)

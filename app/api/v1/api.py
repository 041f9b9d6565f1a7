from fastapi import APIRouter
from app.api.v1.endpoints import admin, bills, payments, users
from app.schemas.common import ErrorResponse

api_router = APIRouter(responses={
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
})

api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(bills.router, prefix="/bills", tags=["bills"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])

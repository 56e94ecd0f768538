from fastapi import APIRouter
from dental_funnel.modules.wizard.router import router as wizard_router
from dental_funnel.modules.payments.router import router as payments_router
from dental_funnel.modules.auth.router import router as auth_router
from dental_funnel.modules.evaluations.router import router as evaluations_router

api_router = APIRouter()
api_router.include_router(wizard_router, prefix="/wizard", tags=["wizard"])
api_router.include_router(payments_router, prefix="/payments", tags=["payments"])
api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
api_router.include_router(evaluations_router, prefix="/evaluations", tags=["evaluations"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}

import uuid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from dental_funnel.core.db import get_session
from dental_funnel.core.errors import NotFound, StageTransitionError
from dental_funnel.core.security import require_scopes
from dental_funnel.modules.evaluations.service import EvaluationService
from dental_funnel.modules.evaluations.schemas import EvaluationOut

router = APIRouter()

def svc(s: AsyncSession = Depends(get_session)) -> EvaluationService:
    return EvaluationService(s)

@router.get("/{evaluation_id}", response_model=EvaluationOut, dependencies=[Depends(require_scopes("evaluations:read"))])
async def get_evaluation(evaluation_id: uuid.UUID, service: EvaluationService = Depends(svc)):
    obj = await service.get(evaluation_id)
    if not obj: raise HTTPException(404, "not_found")
    return obj

@router.post("/{evaluation_id}/complete", response_model=EvaluationOut, dependencies=[Depends(require_scopes("evaluations:write"))])
async def complete_evaluation(evaluation_id: uuid.UUID, service: EvaluationService = Depends(svc)):
    try:
        return await service.complete(evaluation_id)
    except NotFound:
        raise HTTPException(404, "not_found")
    except StageTransitionError as e:
        raise HTTPException(409, e.code)

@router.post("/{evaluation_id}/cancel", response_model=EvaluationOut, dependencies=[Depends(require_scopes("evaluations:write"))])
async def cancel_evaluation(evaluation_id: uuid.UUID, service: EvaluationService = Depends(svc)):
    try:
        return await service.cancel(evaluation_id)
    except NotFound:
        raise HTTPException(404, "not_found")
    except StageTransitionError as e:
        raise HTTPException(409, e.code)

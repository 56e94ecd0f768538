import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from dental_funnel.api.deps import get_catalog, get_collaborators
from dental_funnel.core.catalog import FunnelCatalog
from dental_funnel.core.db import get_session
from dental_funnel.core.errors import ActionNotAllowed, NotFound, StageTransitionError
from dental_funnel.modules.wizard.schemas import (
    QuestionnaireSubmission, RouteIn, ExistingPatientLoginIn, ExistingPatientPathIn,
    TreatmentRequestIn, PaymentReturnIn, ScheduleIn, ResumeIn,
)
from dental_funnel.modules.wizard.service import WizardService
from dental_funnel.modules.wizard.state import WizardStage, WizardSnapshot
from dental_funnel.modules.wizard.state_store import WizardStateStore
from dental_funnel.platform.collaborators import Collaborators

router = APIRouter()
logger = logging.getLogger(__name__)

def get_state_store() -> WizardStateStore:
    return WizardStateStore()

def svc(s: AsyncSession = Depends(get_session),
        collaborators: Collaborators = Depends(get_collaborators),
        catalog: FunnelCatalog = Depends(get_catalog),
        store: WizardStateStore = Depends(get_state_store)) -> WizardService:
    return WizardService(s, collaborators, catalog, store)

async def _run(service: WizardService, wizard_id: str, action) -> WizardSnapshot:
    try:
        return await service.act(wizard_id, action)
    except NotFound:
        raise HTTPException(404, "not_found")
    except (ActionNotAllowed, StageTransitionError) as e:
        raise HTTPException(409, {"code": e.code, "message": e.message})

@router.post("", response_model=WizardSnapshot, status_code=status.HTTP_201_CREATED)
async def start_wizard(service: WizardService = Depends(svc)):
    return await service.start()

@router.post("/resume", response_model=WizardSnapshot)
async def resume_wizard(payload: ResumeIn, service: WizardService = Depends(svc)):
    """Rebuild a wizard from a persisted evaluation, e.g. after the payment redirect."""
    try:
        return await service.resume(payload.evaluation_id, payload.wizard_id)
    except NotFound:
        raise HTTPException(404, "not_found")

@router.get("/{wizard_id}", response_model=WizardSnapshot)
async def get_wizard(wizard_id: str, service: WizardService = Depends(svc)):
    try:
        return await service.view(wizard_id)
    except NotFound:
        raise HTTPException(404, "not_found")

@router.post("/{wizard_id}/route", response_model=WizardSnapshot)
async def select_route(wizard_id: str, payload: RouteIn, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.select_route(payload.route_type))

@router.post("/{wizard_id}/existing-patient/login", response_model=WizardSnapshot)
async def existing_patient_login(wizard_id: str, payload: ExistingPatientLoginIn, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.login_existing_patient(payload.national_id, payload.email))

@router.post("/{wizard_id}/existing-patient/path", response_model=WizardSnapshot)
async def existing_patient_path(wizard_id: str, payload: ExistingPatientPathIn, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.choose_existing_patient_path(payload.choice))

@router.post("/{wizard_id}/treatment-request", response_model=WizardSnapshot)
async def treatment_request(wizard_id: str, payload: TreatmentRequestIn, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.submit_treatment_request(payload.motive))

@router.post("/{wizard_id}/questionnaire", response_model=WizardSnapshot)
async def submit_questionnaire(wizard_id: str, payload: QuestionnaireSubmission, service: WizardService = Depends(svc)):
    """Submit intake answers; screening runs right away when the questionnaire is accepted."""
    async def action(w):
        snap = await w.submit_questionnaire(payload)
        if snap.stage == WizardStage.AI_SCREENING:
            snap = await w.run_screening()
        return snap
    return await _run(service, wizard_id, action)

@router.post("/{wizard_id}/screening", response_model=WizardSnapshot)
async def run_screening(wizard_id: str, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.run_screening())

@router.post("/{wizard_id}/continue", response_model=WizardSnapshot)
async def continue_from_path(wizard_id: str, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.continue_from_path())

@router.post("/{wizard_id}/confirm", response_model=WizardSnapshot)
async def confirm_evaluation(wizard_id: str, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.confirm_evaluation())

@router.post("/{wizard_id}/checkout", response_model=WizardSnapshot)
async def open_checkout(wizard_id: str, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.open_checkout())

@router.post("/{wizard_id}/payment-return", response_model=WizardSnapshot)
async def payment_return(wizard_id: str, payload: PaymentReturnIn, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.check_payment_status(payload.outcome))

@router.get("/{wizard_id}/slots", response_model=WizardSnapshot)
async def load_slots(wizard_id: str, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.load_slots())

@router.post("/{wizard_id}/schedule", response_model=WizardSnapshot)
async def schedule_appointment(wizard_id: str, payload: ScheduleIn, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.schedule_appointment(payload.date, payload.time))

@router.post("/{wizard_id}/reset", response_model=WizardSnapshot)
async def reset_wizard(wizard_id: str, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.reset())

@router.post("/{wizard_id}/cancel", response_model=WizardSnapshot)
async def cancel_wizard(wizard_id: str, service: WizardService = Depends(svc)):
    return await _run(service, wizard_id, lambda w: w.cancel())

import asyncio
import base64
import logging
import mimetypes
import uuid
from sqlalchemy.ext.asyncio import AsyncSession

from dental_funnel.core.catalog import FunnelCatalog
from dental_funnel.core.errors import AdapterUnavailable
from dental_funnel.modules.evaluations.enums import EvaluationStage, SuggestedRoute
from dental_funnel.modules.evaluations.models import Evaluation
from dental_funnel.modules.evaluations.service import EvaluationService
from dental_funnel.modules.events.outbox import OutboxService
from dental_funnel.modules.screening.classifier import apply_priority_notice, fallback_screening
from dental_funnel.modules.screening.parser import ScreeningParseError, parse_screening_output
from dental_funnel.modules.screening.schemas import ScreeningResult
from dental_funnel.platform.collaborators import Collaborators
from dental_funnel.platform.ports.screening import ScreeningRequest

logger = logging.getLogger(__name__)

class ScreeningService:
    def __init__(self, session: AsyncSession, collaborators: Collaborators, catalog: FunnelCatalog):
        self.session = session
        self.c = collaborators
        self.catalog = catalog
        self.evaluations = EvaluationService(session)
        self.outbox = OutboxService(session)

    async def _image_data_urls(self, keys: list[str]) -> list[str]:
        urls = []
        for key in keys:
            try:
                data = await asyncio.to_thread(self.c.storage.get_bytes, key)
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read intake image {key}: {e}")
                continue
            mime = mimetypes.guess_type(key)[0] or "image/png"
            urls.append(f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}")
        return urls

    async def screen(self, evaluation: Evaluation) -> ScreeningResult:
        """Gateway result when usable, local classifier otherwise. Never raises for adapter trouble."""
        questionnaire = evaluation.clinical_questionnaire or {}
        motive = evaluation.motive or ""
        request = ScreeningRequest(
            evaluation_id=str(evaluation.id),
            motive=motive,
            questionnaire=questionnaire,
            image_references=list(evaluation.image_references or []),
            image_data_urls=await self._image_data_urls(list(evaluation.image_references or [])),
        )
        try:
            raw = await self.c.screening.analyze(request)
            result = parse_screening_output(raw)
        except AdapterUnavailable as e:
            logger.warning(f"AI screening unavailable for {evaluation.id}, using fallback: {e.message}")
            result = fallback_screening(motive, questionnaire, self.catalog)
        except ScreeningParseError as e:
            logger.warning(f"AI screening output unusable for {evaluation.id}, using fallback: {e}")
            result = fallback_screening(motive, questionnaire, self.catalog)
        except Exception:
            # screening must never stop the funnel
            logger.exception(f"AI screening failed unexpectedly for {evaluation.id}, using fallback")
            result = fallback_screening(motive, questionnaire, self.catalog)
        result.summary = apply_priority_notice(result.summary, questionnaire, self.catalog)
        return result

    async def run(self, evaluation_id: uuid.UUID) -> Evaluation:
        """
        Screen and persist route, summary and findings atomically with stage=ai_analyzed.
        A result already stored is kept (first writer wins).
        """
        ev = await self.evaluations.require(evaluation_id, fresh=True)
        if ev.suggested_route is not None:
            return ev
        result = await self.screen(ev)
        written = await self.evaluations.repo.record_screening(
            evaluation_id,
            route=result.suggested_route,
            summary=result.summary,
            findings=[f.model_dump(mode="json") for f in result.findings],
            source=result.source,
        )
        if written:
            await self.evaluations.leads.sync_stage(evaluation_id, EvaluationStage.AI_ANALYZED)
            await self.outbox.enqueue(
                "SCREENING_COMPLETED", "evaluation", evaluation_id,
                {"suggested_route": SuggestedRoute(result.suggested_route).value, "source": result.source},
            )
            await self.session.commit()
            logger.info(f"Screening stored for {evaluation_id}: {result.suggested_route.value} ({result.source})")
        else:
            await self.session.rollback()
            logger.info(f"Screening for {evaluation_id} already recorded by another writer; keeping it")
        return await self.evaluations.require(evaluation_id, fresh=True)

import uuid
import logging
from typing import Awaitable, Callable
from sqlalchemy.ext.asyncio import AsyncSession

from dental_funnel.core.catalog import FunnelCatalog
from dental_funnel.core.errors import NotFound
from dental_funnel.modules.wizard.orchestrator import WizardOrchestrator
from dental_funnel.modules.wizard.state import WizardState, WizardSnapshot
from dental_funnel.modules.wizard.state_store import WizardStateStore
from dental_funnel.platform.collaborators import Collaborators

logger = logging.getLogger(__name__)

class WizardService:
    """Loads the wizard state, runs one orchestrator action and saves the result."""

    def __init__(self, session: AsyncSession, collaborators: Collaborators, catalog: FunnelCatalog, store: WizardStateStore):
        self.session = session
        self.collaborators = collaborators
        self.catalog = catalog
        self.store = store

    def orchestrator(self, state: WizardState | None = None) -> WizardOrchestrator:
        return WizardOrchestrator(self.session, self.collaborators, self.catalog, state)

    async def _load(self, wizard_id: str) -> WizardOrchestrator:
        state = await self.store.load(wizard_id)
        if state is None:
            raise NotFound(f"wizard {wizard_id} not found")
        return self.orchestrator(state)

    async def start(self) -> WizardSnapshot:
        orch = self.orchestrator()
        await self.store.save(orch.state)
        logger.info(f"Wizard {orch.state.wizard_id} started")
        return orch.snapshot()

    async def view(self, wizard_id: str) -> WizardSnapshot:
        orch = await self._load(wizard_id)
        return orch.snapshot()

    async def act(self, wizard_id: str, action: Callable[[WizardOrchestrator], Awaitable[WizardSnapshot]]) -> WizardSnapshot:
        orch = await self._load(wizard_id)
        snap = await action(orch)
        await self.store.save(orch.state)
        return snap

    async def resume(self, evaluation_id: uuid.UUID, wizard_id: str | None = None) -> WizardSnapshot:
        state = await self.store.load(wizard_id) if wizard_id else None
        orch = self.orchestrator(state)
        snap = await orch.resume(evaluation_id)
        await self.store.save(orch.state)
        return snap

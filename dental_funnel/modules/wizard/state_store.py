from dental_funnel.core.config import settings
from dental_funnel.core.redis import redis_manager
from dental_funnel.modules.wizard.state import WizardState


class WizardStateStore:
    """
    Wizard state as JSON in Redis, refreshed with a TTL on every save so an
    abandoned wizard disappears on its own.
    """
    def __init__(self, backend=redis_manager, ttl_seconds: int | None = None):
        self.backend = backend
        self.ttl_seconds = ttl_seconds or settings.WIZARD_STATE_TTL_SECONDS

    @staticmethod
    def key(wizard_id: str) -> str:
        return f"wizard_state:{wizard_id}"

    async def load(self, wizard_id: str) -> WizardState | None:
        data = await self.backend.get_json(self.key(wizard_id))
        if not data:
            return None
        return WizardState.model_validate(data)

    async def save(self, state: WizardState) -> None:
        await self.backend.set_json(self.key(state.wizard_id), state.model_dump(mode="json"), self.ttl_seconds)

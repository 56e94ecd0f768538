from pydantic import BaseModel
from dental_funnel.modules.evaluations.enums import SuggestedRoute
from dental_funnel.modules.evaluations.schemas import Finding

class ScreeningResult(BaseModel):
    suggested_route: SuggestedRoute
    summary: str
    findings: list[Finding]
    source: str  # gateway | fallback

import json
import re
from pydantic import BaseModel, Field, AliasChoices, ValidationError, field_validator

from dental_funnel.modules.evaluations.enums import SuggestedRoute, Severity
from dental_funnel.modules.evaluations.schemas import Finding
from dental_funnel.modules.screening.schemas import ScreeningResult

MAX_SUMMARY_WORDS = 250

ROUTE_ALIASES = {
    "implants": SuggestedRoute.IMPLANTS,
    "implant": SuggestedRoute.IMPLANTS,
    "implantes": SuggestedRoute.IMPLANTS,
    "orthodontics": SuggestedRoute.ORTHODONTICS,
    "ortodoncia": SuggestedRoute.ORTHODONTICS,
    "caries": SuggestedRoute.CARIES,
    "bruxism": SuggestedRoute.BRUXISM,
    "bruxismo": SuggestedRoute.BRUXISM,
}

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class ScreeningParseError(ValueError):
    pass


class _RawFinding(BaseModel):
    tooth_id: str = Field(validation_alias=AliasChoices("tooth_id", "piece", "tooth"))
    x: float = Field(ge=0, le=100, validation_alias=AliasChoices("x", "position_x"))
    y: float = Field(ge=0, le=100, validation_alias=AliasChoices("y", "position_y"))
    severity: Severity = Field(validation_alias=AliasChoices("severity", "status"))
    diagnosis: str | None = None
    depth: str | None = None
    treatment: str | None = None

    @field_validator("tooth_id", mode="before")
    @classmethod
    def _tooth_as_text(cls, v):
        return str(v) if isinstance(v, (int, float)) else v

    @field_validator("severity", mode="before")
    @classmethod
    def _lower(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class _RawScreening(BaseModel):
    suggested_route: SuggestedRoute = Field(validation_alias=AliasChoices("suggested_route", "ruta_sugerida", "route"))
    summary: str = Field(min_length=1, validation_alias=AliasChoices("summary", "resumen_ia", "ai_summary"))
    findings: list[_RawFinding] = Field(default_factory=list, validation_alias=AliasChoices("findings", "hallazgos"))

    @field_validator("suggested_route", mode="before")
    @classmethod
    def _route_alias(cls, v):
        if isinstance(v, str):
            key = v.strip().lower()
            if key in ROUTE_ALIASES:
                return ROUTE_ALIASES[key]
        return v


def extract_json(text: str) -> str:
    match = _FENCE.search(text)
    if match:
        return match.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]
    return text.strip()


def truncate_words(text: str, limit: int = MAX_SUMMARY_WORDS) -> str:
    words = text.split()
    if len(words) <= limit:
        return text.strip()
    return " ".join(words[:limit]) + "…"


def parse_screening_output(text: str) -> ScreeningResult:
    if not text or not text.strip():
        raise ScreeningParseError("empty screening output")
    try:
        data = json.loads(extract_json(text))
    except json.JSONDecodeError as e:
        raise ScreeningParseError(f"screening output is not JSON: {e}") from e
    if not isinstance(data, dict):
        raise ScreeningParseError("screening output is not an object")
    try:
        raw = _RawScreening.model_validate(data)
    except ValidationError as e:
        raise ScreeningParseError(f"screening output failed validation: {e.error_count()} errors") from e
    return ScreeningResult(
        suggested_route=raw.suggested_route,
        summary=truncate_words(raw.summary),
        findings=[
            Finding(
                tooth_id=f.tooth_id, position_x=f.x, position_y=f.y, severity=f.severity,
                diagnosis=f.diagnosis, depth=f.depth, treatment=f.treatment,
            )
            for f in raw.findings
        ],
        source="gateway",
    )

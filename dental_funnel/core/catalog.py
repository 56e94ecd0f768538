"""
Immutable pricing, keyword and booking-link tables for the funnel.

Built once from settings and handed to the orchestrator and services, so tests can
construct their own catalog without touching module state.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from dental_funnel.core.config import Settings, settings
from dental_funnel.modules.evaluations.enums import RouteType, SuggestedRoute, Severity


@dataclass(frozen=True)
class FindingTemplate:
    tooth_id: str
    x: float
    y: float
    severity: Severity
    diagnosis: str | None = None
    depth: str | None = None
    treatment: str | None = None

    def as_dict(self) -> dict:
        return {
            "tooth_id": self.tooth_id,
            "position_x": self.x,
            "position_y": self.y,
            "severity": self.severity.value,
            "diagnosis": self.diagnosis,
            "depth": self.depth,
            "treatment": self.treatment,
        }


@dataclass(frozen=True)
class RouteRule:
    route: SuggestedRoute
    keywords: tuple[str, ...]
    summary: str
    findings: tuple[FindingTemplate, ...]


@dataclass(frozen=True)
class FunnelCatalog:
    prices: Mapping[RouteType, int]
    currency: str
    checkout_titles: Mapping[RouteType, str]
    route_rules: tuple[RouteRule, ...]
    default_rule: RouteRule
    healthy_findings: tuple[FindingTemplate, ...]
    priority_notice: str
    booking_links: Mapping[SuggestedRoute, str]
    default_booking_link: str
    control_only_url: str
    placeholder_times: tuple[str, ...] = ("10:00", "11:00", "15:00", "16:00")
    placeholder_business_days: int = 5
    intense_pain_values: frozenset[str] = field(default_factory=lambda: frozenset({"intense", "intenso"}))

    def price_for(self, route_type: RouteType) -> int:
        return self.prices[RouteType(route_type)]

    def checkout_title_for(self, route_type: RouteType) -> str:
        return self.checkout_titles[RouteType(route_type)]

    def booking_link_for(self, route: SuggestedRoute | None) -> str:
        if route is None:
            return self.default_booking_link
        return self.booking_links.get(SuggestedRoute(route), self.default_booking_link)


HEALTHY_FINDINGS = (
    FindingTemplate("1.1", 48, 32, Severity.GREEN, diagnosis="Sin hallazgos patológicos"),
    FindingTemplate("3.1", 48, 68, Severity.GREEN, diagnosis="Pieza sana"),
    FindingTemplate("4.1", 52, 68, Severity.GREEN, diagnosis="Sin alteraciones"),
)

ROUTE_RULES = (
    RouteRule(
        route=SuggestedRoute.IMPLANTS,
        keywords=("implant", "missing", "lost", "falta", "perdi", "perdí"),
        summary=(
            "Basándonos en tu consulta sobre pérdida dental, te recomendamos explorar nuestro programa "
            "Implant One. Se requiere evaluación radiográfica completa para determinar disponibilidad "
            "ósea y planificar el tratamiento."
        ),
        findings=(
            FindingTemplate("3.6", 28, 72, Severity.RED, diagnosis="Espacio edéntulo detectado",
                            treatment="Evaluación para implante dental"),
        ),
    ),
    RouteRule(
        route=SuggestedRoute.ORTHODONTICS,
        keywords=("braces", "align", "crooked", "brackets", "ortodoncia", "alinea", "torcido"),
        summary=(
            "Tu caso sugiere una evaluación ortodóncica. Nuestro programa OrtoPro analiza tu caso para "
            "determinar el mejor enfoque entre alineadores o ortodoncia convencional, incluyendo índice "
            "de estabilidad."
        ),
        findings=(
            FindingTemplate("1.1", 48, 32, Severity.YELLOW, diagnosis="Apiñamiento leve",
                            treatment="Evaluación ortodóncica"),
            FindingTemplate("2.1", 52, 32, Severity.YELLOW, diagnosis="Rotación dental",
                            treatment="Alineadores o brackets"),
        ),
    ),
    RouteRule(
        route=SuggestedRoute.BRUXISM,
        keywords=("bruxism", "grinding", "clenching", "rechina", "aprieto"),
        summary=(
            "Los síntomas descritos son compatibles con bruxismo. Nuestro protocolo evalúa el patrón de "
            "desgaste dental y su relación con patrones de sueño para diseñar un plan de protección "
            "personalizado."
        ),
        findings=(
            FindingTemplate("1.4", 36, 27, Severity.YELLOW, diagnosis="Desgaste oclusal",
                            treatment="Plano de relajación"),
            FindingTemplate("2.4", 64, 27, Severity.YELLOW, diagnosis="Facetas de desgaste",
                            treatment="Protector nocturno"),
        ),
    ),
)

CARIES_RULE = RouteRule(
    route=SuggestedRoute.CARIES,
    keywords=(),
    summary=(
        "Te recomendamos iniciar con nuestro programa ZERO CARIES que incluye diagnóstico asistido por IA "
        "para detectar lesiones en etapas tempranas, cuando aún son tratables sin intervención invasiva."
    ),
    findings=(
        FindingTemplate("2.1", 52, 32, Severity.RED, diagnosis="Caries en esmalte mesial",
                        depth="0,89mm de profundidad", treatment="Compatible con tratamiento regenerativo"),
    ),
)

BOOKING_LINKS = {
    SuggestedRoute.ORTHODONTICS: "https://ff.healthatom.io/QVVP56",
    SuggestedRoute.IMPLANTS: "https://ff.healthatom.io/v68xCg",
    SuggestedRoute.CARIES: "https://ff.healthatom.io/TA6eA1",
    SuggestedRoute.BRUXISM: "https://ff.healthatom.io/TA6eA1",
}


def build_catalog(s: Settings = settings) -> FunnelCatalog:
    prices = {
        RouteType.NEW_PATIENT: s.PRICE_FULL_EVALUATION,
        RouteType.SECOND_OPINION: s.PRICE_FULL_EVALUATION,
        RouteType.INTERNATIONAL: s.PRICE_FULL_EVALUATION,
        RouteType.EXISTING_PATIENT: s.PRICE_EXISTING_PATIENT,
    }
    titles = {
        RouteType.NEW_PATIENT: "Evaluación Premium - Paciente Nuevo",
        RouteType.SECOND_OPINION: "Evaluación Premium - Segunda Opinión",
        RouteType.INTERNATIONAL: "Evaluación Premium - Paciente Internacional",
        RouteType.EXISTING_PATIENT: "Evaluación de Tratamiento - Paciente Miró",
    }
    return FunnelCatalog(
        prices=MappingProxyType(prices),
        currency=s.CHECKOUT_CURRENCY,
        checkout_titles=MappingProxyType(titles),
        route_rules=ROUTE_RULES,
        default_rule=CARIES_RULE,
        healthy_findings=HEALTHY_FINDINGS,
        priority_notice="⚠️ PRIORIDAD: Dolor intenso reportado. ",
        booking_links=MappingProxyType(dict(BOOKING_LINKS)),
        default_booking_link="https://ff.healthatom.io/TA6eA1",
        control_only_url=s.CONTROL_ONLY_URL,
    )

"""
Deterministic local screening used whenever the AI gateway is unavailable or
returns something we cannot parse.
"""
from dental_funnel.core.catalog import FunnelCatalog, RouteRule
from dental_funnel.modules.screening.schemas import ScreeningResult
from dental_funnel.modules.evaluations.schemas import Finding

PAIN_KEYS = ("pain_level", "painLevel", "dolor_actual")


def pain_level(questionnaire: dict | None) -> str | None:
    if not questionnaire:
        return None
    for key in PAIN_KEYS:
        value = questionnaire.get(key)
        if value:
            return str(value).strip().lower()
    return None


def classify_motive(motive: str, catalog: FunnelCatalog) -> RouteRule:
    """First rule with a keyword contained in the motive wins; caries otherwise."""
    text = (motive or "").lower()
    for rule in catalog.route_rules:
        if any(keyword in text for keyword in rule.keywords):
            return rule
    return catalog.default_rule


def apply_priority_notice(summary: str, questionnaire: dict | None, catalog: FunnelCatalog) -> str:
    if pain_level(questionnaire) not in catalog.intense_pain_values:
        return summary
    if summary.startswith(catalog.priority_notice):
        return summary
    return catalog.priority_notice + summary


def fallback_screening(motive: str, questionnaire: dict | None, catalog: FunnelCatalog) -> ScreeningResult:
    rule = classify_motive(motive, catalog)
    findings = [Finding(**f.as_dict()) for f in rule.findings]
    reported = {f.tooth_id for f in findings}
    for healthy in catalog.healthy_findings:
        if healthy.tooth_id not in reported:
            findings.append(Finding(**healthy.as_dict()))
    return ScreeningResult(
        suggested_route=rule.route,
        summary=apply_priority_notice(rule.summary, questionnaire, catalog),
        findings=findings,
        source="fallback",
    )

import json
import logging
import httpx

from dental_funnel.core.config import settings
from dental_funnel.core.errors import AdapterUnavailable
from dental_funnel.platform.ports.screening import ScreeningPort, ScreeningRequest

log = logging.getLogger(__name__)

SYSTEM_PROMPT = """Eres un asistente de análisis dental con IA. Analiza radiografías panorámicas y fotos dentales para identificar hallazgos clínicos.

IMPORTANTE: el resultado es un PRE-diagnóstico que debe ser confirmado por un profesional.

Identifica caries (con localización), desgaste compatible con bruxismo, espacios edéntulos que podrían requerir implantes y maloclusiones o apiñamiento que sugieran ortodoncia.

Responde SIEMPRE en JSON con esta estructura exacta:
{
  "suggested_route": "caries" | "implants" | "orthodontics" | "bruxism",
  "summary": "Texto explicativo del análisis (máximo 200 palabras)",
  "findings": [
    {"tooth_id": "2.1", "x": 52, "y": 32, "severity": "red" | "yellow" | "green",
     "diagnosis": "...", "depth": "...", "treatment": "..."}
  ]
}

Las coordenadas x,y son porcentajes (0-100) sobre una panorámica de referencia: x=50 es el centro, y=30 dientes superiores, y=70 dientes inferiores."""


def _user_content(request: ScreeningRequest) -> list[dict]:
    text = f"Motivo de consulta: {request.motive}\n"
    if request.questionnaire:
        text += f"Cuestionario clínico: {json.dumps(request.questionnaire, ensure_ascii=False)}\n"
    if request.image_data_urls:
        text += f"Se adjuntan {len(request.image_data_urls)} imágenes."
    else:
        text += "No se adjuntaron imágenes; basa el análisis en el motivo y el cuestionario."
    content: list[dict] = [{"type": "text", "text": text}]
    for url in request.image_data_urls:
        content.append({"type": "image_url", "image_url": {"url": url}})
    return content


class GatewayScreening(ScreeningPort):
    """OpenAI-compatible chat/completions gateway."""

    def __init__(self, api_key: str | None = None, url: str | None = None, model: str | None = None,
                 timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key or settings.AI_GATEWAY_API_KEY
        self.url = url or settings.AI_GATEWAY_URL
        self.model = model or settings.AI_MODEL
        self.timeout = timeout or settings.AI_TIMEOUT_SECONDS
        self.transport = transport

    async def analyze(self, request: ScreeningRequest) -> str:
        if not self.api_key:
            # screening falls back locally instead of failing the funnel
            raise AdapterUnavailable("AI gateway key not configured")
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": _user_content(request)},
            ],
            "temperature": 0.3,
            "max_tokens": 2000,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(self.url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise AdapterUnavailable(f"AI gateway request failed: {e}") from e

        if resp.status_code == 429:
            raise AdapterUnavailable("AI gateway rate limited")
        if resp.status_code == 402:
            raise AdapterUnavailable("AI gateway credits exhausted")
        if resp.status_code in (401, 403):
            log.error("AI gateway rejected credentials (status %s)", resp.status_code)
            raise AdapterUnavailable("AI gateway rejected credentials")
        if resp.status_code >= 400:
            raise AdapterUnavailable(f"AI gateway error {resp.status_code}")

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AdapterUnavailable("AI gateway returned an unexpected body") from e
        if not content:
            raise AdapterUnavailable("AI gateway returned empty content")
        log.info("AI screening response received for evaluation %s", request.evaluation_id)
        return content

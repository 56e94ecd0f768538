from typing import Protocol, runtime_checkable
from pydantic import BaseModel

class ScreeningRequest(BaseModel):
    evaluation_id: str
    motive: str
    questionnaire: dict = {}
    image_references: list[str] = []
    # base64 data URLs for the referenced images that could be read back
    image_data_urls: list[str] = []

@runtime_checkable
class ScreeningPort(Protocol):
    async def analyze(self, request: ScreeningRequest) -> str:
        """Return the raw model output; raise AdapterUnavailable on any transport/service failure."""
        ...

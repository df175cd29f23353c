import httpx

from notera.config import settings
from notera.errors import AIConfigurationError, AIEndpointError


def extract_text(data: dict) -> str:
    """Return the first candidate's first text part, or "" when absent."""
    try:
        return data["candidates"][0]["content"]["parts"][0].get("text") or ""
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""


class GeminiClient:
    """Async wrapper around the Gemini ``generateContent`` REST endpoint.

    Usage::

        gemini = GeminiClient()                             # model from settings
        text = await gemini.generate_from_audio(b64, "audio/webm", prompt)

        pro = gemini.with_model("gemini-2.5-pro")           # shares the HTTP session

    Audio travels inline as base64 next to a single text instruction; the
    response is expected to hold one text candidate.
    """

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._model = model or settings.gemini_model
        self._api_key = api_key if api_key is not None else settings.gemini_api_key
        self._base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=settings.ai_timeout_seconds)

    # ------------------------------------------------------------------
    # Model switching
    # ------------------------------------------------------------------
    @property
    def default_model(self) -> str:
        return self._model

    def with_model(self, model_name: str) -> "GeminiClient":
        """Return a client bound to *model_name* sharing this one's HTTP session."""
        clone = GeminiClient.__new__(GeminiClient)
        clone._model = model_name
        clone._api_key = self._api_key
        clone._base_url = self._base_url
        clone._client = self._client
        return clone

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    async def generate_from_audio(
        self,
        audio_base64: str,
        mime_type: str,
        prompt: str,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> str:
        """Send inline audio plus one instruction and return the response text.

        Raises ``AIEndpointError`` on a non-success status.  An empty string
        is returned as-is; deciding whether that is an error is up to the caller.
        """
        if not self._api_key:
            raise AIConfigurationError("Gemini API key not configured")

        body = {
            "contents": [
                {
                    "parts": [
                        {"inline_data": {"mime_type": mime_type, "data": audio_base64}},
                        {"text": prompt},
                    ]
                }
            ],
            "generationConfig": {
                "temperature": settings.ai_temperature if temperature is None else temperature,
                "maxOutputTokens": max_output_tokens or settings.ai_max_output_tokens,
            },
        }
        resp = await self._client.post(
            f"{self._base_url}/models/{model or self._model}:generateContent",
            params={"key": self._api_key},
            json=body,
        )
        if not resp.is_success:
            raise AIEndpointError(resp.status_code, resp.text)
        return extract_text(resp.json())

    async def aclose(self) -> None:
        await self._client.aclose()

from __future__ import annotations

import base64
import math
import time
from typing import Any, List, Optional
from urllib.parse import quote

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from beauty_app.config import settings
from beauty_app.errors import (
    ConfigurationError,
    DiagnosisError,
    MalformedResponse,
    NoImageGenerated,
    TransportError,
)
from beauty_app.schemas import (
    CapturedImage,
    DiagnosticResult,
    FacialMetric,
    InlineImage,
    Product,
    SearchResult,
)
from beauty_app.utils.json_text import loads_object
from beauty_app.utils.logging import get_logger

logger = get_logger("gemini")

DIAGNOSIS_PROMPT = (
    "You are a professional facial aesthetics analyst. Study the portrait and produce a facial report.\n"
    "1. Return an annotated copy of the photo: keep the face unchanged and overlay thin guide lines, "
    "proportion markers and short labels for the measured areas.\n"
    "2. Return a JSON object with keys:\n"
    "   - summary: two or three sentences describing skin condition, tone and facial harmony\n"
    "   - metrics: list of 4 to 6 items {label, score} where score is an integer from 0 to 100. "
    "Always include one item labelled 'Overall Harmony'.\n"
    "STRICT OUTPUT REQUIREMENTS: the text part must be a single valid JSON object ONLY, "
    "no markdown, no explanations, no code fences."
)

DEFAULT_LOOK_PROMPT = (
    "Apply a sophisticated, high-fashion K-beauty makeup look to this person. "
    "Enhance skin texture to be glass-like, add soft coral-pink blush, defined eyeliner, "
    "and a gradient lip tint."
)

IDENTITY_CLAUSE = (
    "Keep the facial structure and identity identical, only apply virtual makeup. "
    "Photorealistic, 8k resolution."
)

DEFAULT_SEARCH_KEYWORDS = "sophisticated K-beauty look"
SEARCH_FALLBACK_DESCRIPTION = "Could not retrieve trending products at this moment."
PRODUCT_FALLBACK_REASON = "Trending item matching your keywords."

SAFETY_SETTINGS = [
    types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_NONE)
    for category in (
        types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    )
]


def format_score(score: float) -> str:
    return str(int(score)) if float(score).is_integer() else str(score)


def diagnosis_context(result: DiagnosticResult) -> str:
    """Text woven into the look and search prompts."""
    metrics = ", ".join(f"{m.label} {format_score(m.score)}%" for m in result.metrics)
    return f"{result.summary}. Metrics: {metrics}"


def build_look_prompt(user_request: str = "", research_notes: str = "", context: str = "") -> str:
    user_request = (user_request or "").strip()
    if user_request:
        prompt = (
            f'Apply makeup to this person based on the following request: "{user_request}". '
            "Make sure the makeup style matches their request (e.g., if they ask for cool-tone pink lipstick, "
            "apply cool-tone pink lips; if they ask for natural look, apply light natural makeup). "
        )
    else:
        prompt = DEFAULT_LOOK_PROMPT + " "
    if context:
        prompt += f"Facial report for this person: {context}. Choose tones that flatter these features. "
    if research_notes and research_notes.strip():
        prompt += f"Take these research notes into account: {research_notes.strip()}. "
    return prompt + IDENTITY_CLAUSE


def build_search_prompt(user_request: str = "", research_notes: str = "", context: str = "") -> str:
    keywords = (user_request or "").strip() or DEFAULT_SEARCH_KEYWORDS
    lines = [
        "You are a K-Beauty Trend Expert.",
        f'Perform a Google Search to find exactly 5 currently trending/hot K-beauty products that match the style keywords: "{keywords}".',
    ]
    if context:
        lines.append(f"The attached photo's facial report: {context}. Prefer products suited to it.")
    if research_notes and research_notes.strip():
        lines.append(f"Research notes from the user: {research_notes.strip()}")
    lines.append(
        "Output Format (JSON Only):\n"
        "{\n"
        f'  "description": "A brief summary of why these products match the \'{keywords}\' style.",\n'
        '  "recommendations": [\n'
        '    {"brand": "Brand Name", "productName": "Specific Item Name (without brand)", "reason": "Why it fits the keyword"}\n'
        "  ]\n"
        "}"
    )
    return "\n".join(lines)


def product_url(item_name: str, search_url: str | None = None) -> str:
    # query is the item name only, never the brand
    query = quote(item_name, safe="-_.!~*'()")
    return f"{search_url or settings.product_search_url}{query}"


def parse_search_response(text: str, user_request: str = "", search_url: str | None = None) -> SearchResult:
    """Map model text to a SearchResult, degrading to an empty list on bad JSON."""
    try:
        parsed = loads_object(text)
    except MalformedResponse as e:
        logger.warning(f"[Gemini] search JSON parse failed: {e}")
        logger.warning(f"[Gemini] Raw response: {(text or '')[:1000]}...")
        return SearchResult(description=SEARCH_FALLBACK_DESCRIPTION, products=[])

    products: List[Product] = []
    recommendations = parsed.get("recommendations")
    if isinstance(recommendations, list):
        for index, rec in enumerate(recommendations):
            if not isinstance(rec, dict):
                continue
            brand = str(rec.get("brand") or "").strip()
            item_name = str(rec.get("productName") or rec.get("name") or "").strip()
            if not item_name:
                continue
            products.append(
                Product(
                    id=f"trend-{index}",
                    name=f"{brand} - {item_name}" if brand else item_name,
                    description=str(rec.get("reason") or PRODUCT_FALLBACK_REASON),
                    url=product_url(item_name, search_url),
                )
            )

    description = parsed.get("description")
    if not isinstance(description, str) or not description.strip():
        keywords = (user_request or "").strip() or DEFAULT_SEARCH_KEYWORDS
        description = f'Trending products for "{keywords}"'
    return SearchResult(description=description, products=products)


def _parse_metrics(raw: Any) -> List[FacialMetric]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise MalformedResponse(f"metrics must be a list, got {type(raw).__name__}")
    metrics: List[FacialMetric] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        label = str(item.get("label") or "").strip()
        score = item.get("score")
        if isinstance(score, str):
            score = score.strip().rstrip("%")
        try:
            value = float(score)
        except (TypeError, ValueError):
            logger.warning(f"[Gemini] skipping metric {label!r} with score {score!r}")
            continue
        if not label or not math.isfinite(value):
            continue
        metrics.append(FacialMetric(label=label, score=min(100.0, max(0.0, value))))
    return metrics


def _response_parts(response: Any) -> list:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    return list(getattr(content, "parts", None) or [])


def _response_text(response: Any) -> str:
    texts = [part.text for part in _response_parts(response) if getattr(part, "text", None)]
    if texts:
        return "".join(texts)
    return getattr(response, "text", None) or ""


def first_inline_image(response: Any) -> Optional[InlineImage]:
    for part in _response_parts(response):
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            data = inline.data
            if isinstance(data, bytes):
                data = base64.b64encode(data).decode("ascii")
            return InlineImage(data=data, mime_type=inline.mime_type or "image/png")
    return None


def _image_part(image: CapturedImage) -> types.Part:
    return types.Part.from_bytes(data=image.to_bytes(), mime_type=image.mime_type)


class GeminiClient:
    """The three remote operations: diagnose, synthesize a look, search products."""

    def __init__(
        self,
        api_key: str | None = None,
        client: Any = None,
        image_model: str | None = None,
        text_model: str | None = None,
        search_url: str | None = None,
        timeout_ms: int | None = None,
    ) -> None:
        self.api_key = api_key or settings.gemini_api_key
        self.image_model = image_model or settings.gemini_image_model
        self.text_model = text_model or settings.gemini_text_model
        self.search_url = search_url or settings.product_search_url
        self.timeout_ms = timeout_ms or settings.gemini_timeout_ms
        self._client = client
        if client is None and not self.api_key:
            logger.warning("GEMINI_API_KEY is not set; Gemini calls will fail")

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("GEMINI_API_KEY is not set")
            self._client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=self.timeout_ms),
            )
        return self._client

    async def _generate(self, operation: str, model: str, contents: list, config: types.GenerateContentConfig) -> Any:
        client = self.client
        start_time = time.perf_counter()
        try:
            response = await client.aio.models.generate_content(model=model, contents=contents, config=config)
        except (genai_errors.APIError, httpx.HTTPError) as e:
            logger.warning(f"[Gemini] {operation} request failed: {e}")
            raise TransportError(f"{operation} request failed: {e}") from e
        logger.info(f"[TIMING] Gemini {operation} took {time.perf_counter() - start_time:.2f} seconds")
        return response

    async def diagnose(self, image: CapturedImage) -> DiagnosticResult:
        try:
            response = await self._generate(
                "diagnose",
                self.image_model,
                [_image_part(image), DIAGNOSIS_PROMPT],
                types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"], temperature=0.2),
            )
            parsed = loads_object(_response_text(response), required=("summary",))
            summary = parsed["summary"]
            if not isinstance(summary, str) or not summary.strip():
                raise MalformedResponse("summary must be a non-empty string")
            metrics = _parse_metrics(parsed.get("metrics"))
        except (TransportError, MalformedResponse) as e:
            raise DiagnosisError(f"Diagnosis failed: {e}") from e

        overlay = first_inline_image(response)
        if overlay is None:
            logger.info("[Gemini] diagnosis returned no overlay image")
        logger.info(f"[Gemini] diagnosis summary={summary[:120]!r} metrics={len(metrics)}")
        return DiagnosticResult(
            summary=summary.strip(),
            metrics=metrics,
            report_image=overlay.data if overlay else None,
            report_mime_type=overlay.mime_type if overlay else "image/png",
        )

    async def synthesize_look(
        self,
        image: CapturedImage,
        user_request: str = "",
        research_notes: str = "",
        context: str = "",
    ) -> InlineImage:
        prompt = build_look_prompt(user_request, research_notes, context)
        response = await self._generate(
            "synthesize_look",
            self.image_model,
            [_image_part(image), prompt],
            types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
        )
        generated = first_inline_image(response)
        if generated is None:
            logger.error("[Gemini] synthesize_look returned no image part")
            raise NoImageGenerated("No image generated.")
        return generated

    async def search_products(
        self,
        image: CapturedImage,
        user_request: str = "",
        research_notes: str = "",
        context: str = "",
    ) -> SearchResult:
        prompt = build_search_prompt(user_request, research_notes, context)
        try:
            response = await self._generate(
                "search_products",
                self.text_model,
                [_image_part(image), prompt],
                types.GenerateContentConfig(
                    tools=[types.Tool(google_search=types.GoogleSearch())],
                    safety_settings=SAFETY_SETTINGS,
                ),
            )
        except TransportError:
            return SearchResult(description=SEARCH_FALLBACK_DESCRIPTION, products=[])

        result = parse_search_response(_response_text(response), user_request, self.search_url)
        logger.info(f"[Gemini] search returned {len(result.products)} products")
        return result

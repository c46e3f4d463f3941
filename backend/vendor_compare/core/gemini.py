import asyncio
import base64
import json
import logging
import os
import random
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from vendor_compare.core.config import settings
from vendor_compare.core.prices import parse_amount
from vendor_compare.core.vendors import clean_vendor_name
from vendor_compare.schemas.quotes import QuoteLineItem, RawExtractionRecord

logger = logging.getLogger(__name__)

# Service endpoint for Gemini API (v1beta)
API_BASE = "https://generativelanguage.googleapis.com/v1beta"

# Retry behavior for 429/503
MAX_RETRIES = int(os.environ.get("GEMINI_MAX_RETRIES", "5"))
MAX_BACKOFF_SECONDS = float(os.environ.get("GEMINI_MAX_BACKOFF_SECONDS", "20"))

# Sent to Gemini as binary parts; everything else is read as text
BINARY_MIME_TYPES: Dict[str, str] = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}

QUOTE_PROMPT = (
    "Extract pricing information from this vendor quote.\n"
    "Return ONLY valid JSON matching the provided schema.\n"
    "Rules:\n"
    "- Extract ALL line items with prices\n"
    "- Convert all prices to numbers (no currency symbols or thousands separators)\n"
    "- If the total is missing, calculate it\n"
    "- Be precise with item descriptions\n"
    "No markdown. No code fences. No extra text.\n"
)

_resolved_model: Optional[str] = None


class GeminiRequestError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class GeminiRateLimitError(Exception):
    def __init__(self, message: str, retry_after_seconds: Optional[float] = None):
        super().__init__(message)
        self.message = message
        self.retry_after_seconds = retry_after_seconds


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


def _redact_key(s: str) -> str:
    """
    Redact 'key=...' in URLs or text so we never leak API keys in logs/responses.
    """
    if not s:
        return s
    # Replace key=XXXXX (until & or whitespace)
    return re.sub(r"(key=)([^&\s]+)", r"\1REDACTED", s)


def _quote_schema() -> Dict[str, Any]:
    """
    JSON Schema for one extracted quote (matches RawExtractionRecord minus filename/error).
    Used by Gemini Structured Output.
    """
    number = {"type": ["number", "null"]}
    line_item = {
        "type": "object",
        "properties": {
            "description": {"type": "string"},
            "quantity": number,
            "unit": {"type": ["string", "null"]},
            "unit_price": number,
            "total": number,
        },
        "required": ["description"],
    }

    return {
        "type": "object",
        "properties": {
            "vendor": {"type": ["string", "null"]},
            "items": {"type": "array", "items": line_item},
            "subtotal": number,
            "tax": number,
            "fees": number,
            "total": number,
            "currency": {"type": ["string", "null"]},
        },
        "required": ["vendor", "items", "total"],
    }


def _extract_json_best_effort(text: str) -> Dict[str, Any]:
    """
    Robust JSON extraction (handles fenced blocks, extra text, etc.).
    Returns the first valid JSON object found.
    """
    # 1) Prefer fenced ```json ... ```
    fenced = re.search(r"```json\s*(\{.*?\})\s*```", text, re.DOTALL | re.IGNORECASE)
    if fenced:
        return json.loads(fenced.group(1).strip())

    # 2) Try non-greedy blocks
    blocks = re.findall(r"\{.*?\}", text, re.DOTALL)
    for b in blocks:
        try:
            return json.loads(b.strip())
        except ValueError:
            continue

    # 3) Greedy fallback
    m = re.search(r"\{.*\}", text, re.DOTALL)
    if not m:
        raise ValueError("No JSON object found in model output")
    return json.loads(m.group(0))


def _parse_model_text(text: str) -> Dict[str, Any]:
    # 1) Strict JSON parse first
    try:
        obj = json.loads(text)
    except ValueError:
        # 2) Best-effort extraction
        try:
            obj = _extract_json_best_effort(text)
        except ValueError as e:
            raise GeminiRequestError(f"Could not extract JSON from response: {e}", body=text[:2000])

    if not isinstance(obj, dict):
        raise GeminiRequestError("Model output is not a JSON object", body=text[:2000])
    return obj


def _retry_after_seconds(resp: httpx.Response) -> Optional[float]:
    retry_after = resp.headers.get("retry-after")
    if not retry_after:
        return None
    try:
        return max(0.5, min(float(retry_after), MAX_BACKOFF_SECONDS))
    except ValueError:
        return None


async def _sleep_for_retry(resp: httpx.Response, attempt: int) -> None:
    """
    Respect Retry-After header when present; otherwise exponential backoff with jitter.
    """
    wait = _retry_after_seconds(resp)
    if wait is None:
        # Exponential backoff with jitter
        wait = min(MAX_BACKOFF_SECONDS, (2 ** attempt)) + random.uniform(0.0, 0.5)
    logger.info("Gemini returned %s, retrying in %.1fs (attempt %d)", resp.status_code, wait, attempt + 1)
    await asyncio.sleep(wait)


async def _request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    params: Dict[str, Any],
    json_payload: Optional[Dict[str, Any]] = None,
    max_retries: int = MAX_RETRIES,
) -> httpx.Response:
    """
    GET/POST with retries for 429/503. The last response is returned once retries run out.
    """
    attempt = 0
    while True:
        resp = await client.request(method, url, params=params, json=json_payload)
        if resp.status_code not in (429, 503) or attempt >= max_retries:
            return resp
        await _sleep_for_retry(resp, attempt)
        attempt += 1


async def _list_models(client: httpx.AsyncClient, api_key: str) -> Dict[str, Any]:
    """
    Calls GET /v1beta/models (ListModels).
    """
    url = f"{API_BASE}/models"
    r = await _request_with_retry(client, "GET", url, params={"key": api_key})
    if r.status_code >= 400:
        raise GeminiRequestError(
            f"Gemini ListModels failed: {r.status_code}",
            status_code=r.status_code,
            body=_redact_key(r.text)[:2000],
        )
    return r.json()


def _pick_model_from_list(models_payload: Dict[str, Any]) -> str:
    """
    Picks a model name (e.g. 'models/xxx') that supports generateContent.
    Preference:
      1) Flash models (contains 'flash')
      2) Any model that supports generateContent
    """
    models = models_payload.get("models", []) or []

    def supports_generate(m: Dict[str, Any]) -> bool:
        methods = m.get("supportedGenerationMethods") or []
        return any(str(x).lower() == "generatecontent" for x in methods)

    candidates = [m for m in models if supports_generate(m)]
    if not candidates:
        raise GeminiRequestError("No models found that support generateContent (ListModels returned none)")

    flash = [m for m in candidates if "flash" in (m.get("name", "").lower())]
    chosen = (flash[0] if flash else candidates[0]).get("name")
    if not chosen:
        raise GeminiRequestError("ListModels returned a model entry without a name")
    return chosen  # e.g. "models/gemini-2.5-flash"


def _normalize_model_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        return ""
    return name if name.startswith("models/") else f"models/{name}"


async def _resolve_model_name(client: httpx.AsyncClient, api_key: str, refresh: bool = False) -> str:
    """
    Resolves the model name once per process:
      - If GEMINI_MODEL is configured and the model exists, use it.
      - Otherwise, or on 404, list models and choose one that supports generateContent.
    """
    global _resolved_model
    if _resolved_model and not refresh:
        return _resolved_model

    configured = _normalize_model_name(settings.GEMINI_MODEL)

    if configured and not refresh:
        r = await _request_with_retry(client, "GET", f"{API_BASE}/{configured}", params={"key": api_key})
        if r.status_code < 400:
            _resolved_model = configured
            logger.info("Using configured Gemini model %s", configured)
            return configured
        if r.status_code != 404:
            raise GeminiRequestError(
                f"Gemini model lookup failed: {r.status_code}",
                status_code=r.status_code,
                body=_redact_key(r.text)[:2000],
            )
        logger.warning("Configured Gemini model %s not found, falling back to ListModels", configured)

    models_payload = await _list_models(client, api_key)
    _resolved_model = _pick_model_from_list(models_payload)
    logger.info("Resolved Gemini model %s", _resolved_model)
    return _resolved_model


def _document_parts(filename: str, data: bytes) -> List[Dict[str, Any]]:
    """
    Images and PDFs go inline as binary; text-like files (txt, csv, ...) are decoded
    and pasted into the prompt.
    """
    ext = Path(filename).suffix.lower()
    mime_type = BINARY_MIME_TYPES.get(ext)
    if mime_type:
        return [
            {"text": QUOTE_PROMPT},
            {"inline_data": {"mime_type": mime_type, "data": _b64(data)}},
        ]

    content = data.decode("utf-8", errors="replace")[: settings.MAX_TEXT_CHARS]
    return [{"text": f"{QUOTE_PROMPT}\nVENDOR QUOTE ({filename}):\n{content}"}]


def _line_items(raw_items: Any) -> List[QuoteLineItem]:
    if not isinstance(raw_items, list):
        return []

    items: List[QuoteLineItem] = []
    for o in raw_items:
        if not isinstance(o, dict):
            continue
        desc = o.get("description")
        items.append(
            QuoteLineItem(
                description=str(desc).strip() if desc is not None else None,
                quantity=parse_amount(o.get("quantity")),
                unit=o.get("unit") if isinstance(o.get("unit"), str) else None,
                unit_price=parse_amount(o.get("unit_price", o.get("unitPrice"))),
                total=parse_amount(o.get("total", o.get("price"))),
            )
        )
    return items


def record_from_payload(filename: str, obj: Dict[str, Any]) -> RawExtractionRecord:
    """
    Coerce model JSON into a RawExtractionRecord. Money fields become floats or None,
    vendor placeholders like "Unknown" are dropped.
    """
    currency = obj.get("currency")
    return RawExtractionRecord(
        filename=filename,
        vendor=clean_vendor_name(obj.get("vendor")),
        items=_line_items(obj.get("items")),
        subtotal=parse_amount(obj.get("subtotal")),
        tax=parse_amount(obj.get("tax")),
        fees=parse_amount(obj.get("fees")),
        total=parse_amount(obj.get("total")),
        currency=currency.strip().upper() if isinstance(currency, str) and currency.strip() else None,
    )


async def extract_quote(filename: str, data: bytes) -> RawExtractionRecord:
    """
    Sends one vendor quote document to Gemini and returns the extracted record.

    - Uses Structured Output (response_mime_type + response_json_schema)
    - Auto-resolves a valid model via ListModels if the configured model is invalid
    - Retries 429/503 with backoff
    - Redacts API key from any raised errors
    """
    api_key = (settings.GEMINI_API_KEY or "").strip()
    if not api_key:
        raise GeminiRequestError("GEMINI_API_KEY is not set")

    payload = {
        "contents": [{"role": "user", "parts": _document_parts(filename, data)}],
        "generationConfig": {
            "response_mime_type": "application/json",
            "response_json_schema": _quote_schema(),
            "temperature": 0.1,
        },
    }

    async with httpx.AsyncClient(timeout=60) as client:
        model_name = await _resolve_model_name(client, api_key)
        url = f"{API_BASE}/{model_name}:generateContent"
        r = await _request_with_retry(client, "POST", url, params={"key": api_key}, json_payload=payload)

        # If the chosen model suddenly fails with 404 (rare), re-resolve once and try again
        if r.status_code == 404:
            model_name = await _resolve_model_name(client, api_key, refresh=True)
            url = f"{API_BASE}/{model_name}:generateContent"
            r = await _request_with_retry(client, "POST", url, params={"key": api_key}, json_payload=payload)

        if r.status_code == 429:
            raise GeminiRateLimitError(
                "Gemini rate limit exceeded",
                retry_after_seconds=_retry_after_seconds(r),
            )

        if r.status_code >= 400:
            safe_url = _redact_key(str(r.request.url))
            raise GeminiRequestError(
                f"Gemini request failed: {r.status_code} ({safe_url})",
                status_code=r.status_code,
                body=_redact_key(r.text)[:2000],
            )

        data_json = r.json()

    # Preferred structured output location
    try:
        text = data_json["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        raise GeminiRequestError(f"Unexpected Gemini response shape; raw={json.dumps(data_json)[:2000]}")

    return record_from_payload(filename, _parse_model_text(text))

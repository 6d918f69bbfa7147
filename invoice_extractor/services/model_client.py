import base64
import copy
import json
from typing import Any, Mapping

from loguru import logger
from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from ..core.config import settings

EXTRACTION_PROMPT = """
You are an AI invoice data extractor. Read the attached invoice image and
return ONLY a JSON object with this shape:

{
  "invoiceNumber": string,
  "invoiceDate": "YYYY-MM-DD",
  "dueDate": "YYYY-MM-DD",
  "vendor": {"name": string, "email": string, "address": string},
  "customer": {"name": string, "address": string},
  "items": [{"description": string, "quantity": number, "unitPrice": number, "amount": number}],
  "subtotal": number,
  "tax": number,
  "total": number
}

Rules:
- Convert every date to YYYY-MM-DD (e.g. "January 15, 2022" -> "2022-01-15").
- Numbers must be plain JSON numbers without currency symbols.
- Use "" for text and 0 for numbers that are not on the invoice. Do not guess.
"""

VALIDATION_PROMPT = """
You are an AI invoice validator. Strictly compare the user's form data below
with the data visible in the attached invoice image.

1. Extract all relevant data from the invoice image.
2. For date fields (invoiceDate, dueDate) convert the invoice value to
   YYYY-MM-DD before comparing (e.g. "January 15, 2022" -> "2022-01-15").
3. Rule A (mismatch): if a form field is non-empty/non-zero, the invoice has a
   value for it, and the two differ, report an error.
4. Rule B (missing in form): {rule_b}
5. Rule C (not on invoice): if a field is not present on the invoice, never
   report an error for it, whatever the form says.
6. Line items are compared by position; use keys like "items[0].unitPrice".
7. Return ONLY a JSON object with keys "validationResult" ("pass" or "fail")
   and "errors" (field name -> message naming the value on the invoice).
   "errors" must be {} when validationResult is "pass".

The user-submitted form data is:
{form_data}
"""

RULE_B_STRICT = (
    "if a form field is empty or zero and the invoice has a value for it, you "
    "MUST report an error stating the expected value from the invoice."
)
RULE_B_LENIENT = "if a form field is empty or zero, do not report an error for it."

# Returned when no API key is configured
MOCK_EXTRACTION = {
    "invoiceNumber": "INV-10023",
    "invoiceDate": "2025-09-30",
    "dueDate": "2025-10-15",
    "vendor": {
        "name": "Contoso Pty Ltd",
        "email": "billing@contoso.example",
        "address": "1 Collins St, Melbourne VIC 3000",
    },
    "customer": {
        "name": "Ammons DataLabs",
        "address": "42 Example Rd, Sydney NSW 2000",
    },
    "items": [
        {"description": "Consulting services", "quantity": 5, "unitPrice": 70, "amount": 350},
    ],
    "subtotal": 350,
    "tax": 35,
    "total": 385,
}


class ModelClientError(Exception):
    """Base error for calls to the hosted model"""


class ModelCallError(ModelClientError):
    """Network, timeout or API status failure"""


class ModelResponseError(ModelClientError):
    """The model answered, but not with a JSON object"""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


def is_supported_mime_type(mime_type: str | None) -> bool:
    """Only images can be sent to the vision model (PDFs are not rendered)"""
    return bool(mime_type) and mime_type.lower().startswith("image/")


def extract_json_object(text: str | None) -> dict | None:
    """
    Return the first balanced ``{...}`` block in ``text`` that parses as a
    JSON object, ignoring braces inside JSON strings. None when there is none.
    """
    if not text:
        return None

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for pos in range(start, len(text)):
            char = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
            elif char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    try:
                        parsed = json.loads(text[start:pos + 1])
                    except ValueError:
                        break
                    if isinstance(parsed, dict):
                        return parsed
                    break
        start = text.find("{", start + 1)

    return None


class InvoiceModelClient:
    """
    Calls a hosted vision-language model (OpenAI-compatible chat completions).

    Output is untrusted: callers pass extractions through the normalizer and
    validation payloads through ``coerce_model_outcome``. Transient failures
    are retried by the SDK with exponential backoff, bounded by
    LLM_MAX_RETRIES.
    """

    def __init__(self, client: OpenAI | None = None):
        self.model = settings.llm_model
        self.strict_missing_field_policy = settings.strict_missing_field_policy
        self.mock = client is None and not settings.llm_api_key
        self._client = client
        if self._client is None and not self.mock:
            self._client = OpenAI(
                api_key=settings.llm_api_key,
                base_url=settings.llm_base_url or None,
                timeout=settings.llm_timeout_seconds,
                max_retries=settings.llm_max_retries,
            )

    def extract(
        self,
        image_bytes: bytes,
        mime_type: str,
        form_data: Mapping[str, Any] | None = None,
    ) -> dict:
        """
        Extract raw invoice fields from an image.

        Args:
            image_bytes: Uploaded image
            mime_type: Image MIME type (e.g. image/png)
            form_data: Values already in the form, given to the model as context

        Returns:
            Raw extraction (untyped, not yet normalized)
        """
        if self.mock:
            logger.warning(
                "Model API key not configured - using MOCK extraction. "
                "Set LLM_API_KEY to call the hosted model."
            )
            return copy.deepcopy(MOCK_EXTRACTION)

        prompt = EXTRACTION_PROMPT
        if form_data:
            prompt += (
                "\nThe user has already typed these values. They may be incomplete "
                "or wrong; read the invoice, do not copy them:\n"
                + json.dumps(dict(form_data), indent=2, default=str)
            )

        return self._complete(prompt, image_bytes, mime_type, purpose="extract")

    def validate(self, image_bytes: bytes, mime_type: str, form_data: Mapping[str, Any]) -> dict:
        """
        Ask the model to compare form values with the invoice image.

        Returns:
            The model's ``{validationResult, errors}`` payload, unchecked
        """
        if self.mock:
            from .reconciler import create_reconciler

            logger.warning("Model API key not configured - validating against MOCK extraction")
            outcome = create_reconciler(self.strict_missing_field_policy).reconcile(
                form_data, copy.deepcopy(MOCK_EXTRACTION)
            )
            return outcome.model_dump(by_alias=True)

        rule_b = RULE_B_STRICT if self.strict_missing_field_policy else RULE_B_LENIENT
        prompt = VALIDATION_PROMPT.replace("{rule_b}", rule_b).replace(
            "{form_data}", json.dumps(dict(form_data), indent=2, default=str)
        )
        return self._complete(prompt, image_bytes, mime_type, purpose="validate")

    def _complete(self, prompt: str, image_bytes: bytes, mime_type: str, purpose: str) -> dict:
        data_url = f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"

        logger.info(
            "Calling hosted model",
            purpose=purpose,
            model=self.model,
            mime_type=mime_type,
            image_bytes=len(image_bytes),
        )

        try:
            completion = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": data_url, "detail": "high"}},
                        ],
                    }
                ],
                response_format={"type": "json_object"},
                temperature=0,
            )
        except (APIConnectionError, APITimeoutError) as e:
            logger.error("Network/timeout while calling hosted model", purpose=purpose, error=str(e))
            raise ModelCallError(f"Model request failed: {e}") from e
        except APIStatusError as e:
            logger.error("Hosted model returned an error status", purpose=purpose, status_code=e.status_code)
            raise ModelCallError(f"Model request failed with status {e.status_code}: {e.message}") from e

        choice = completion.choices[0] if completion.choices else None
        output = (choice.message.content if choice and choice.message else None) or ""

        parsed = extract_json_object(output)
        if parsed is None:
            logger.error("Model did not return valid JSON", purpose=purpose, preview=output[:300])
            raise ModelResponseError("Model did not return valid JSON", raw=output)

        usage = completion.usage
        logger.info(
            "Hosted model responded",
            purpose=purpose,
            completion_id=completion.id,
            total_tokens=usage.total_tokens if usage else None,
        )
        return parsed

import base64
import binascii
import json

from fastapi import APIRouter, File, Form, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError

from ..deps import ErrorResponse, ExtractJSONRequest, ValidateFailure, ValidateRequest, ValidateSuccess
from ...core.config import settings
from ...models.invoice import InvoiceRecord
from ...services.model_client import InvoiceModelClient, ModelResponseError, is_supported_mime_type
from ...services.normalizer import normalize_invoice
from ...services.reconciler import coerce_model_outcome, create_reconciler

router = APIRouter(prefix="/invoices", tags=["invoices"])


class UploadError(Exception):
    """Unusable upload; reported to the user before any model call"""


def _error(status_code: int, message: str, raw: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=message, raw=raw)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _decode_image(image_base64: str | None) -> bytes:
    """Decode a base64 image, with or without a ``data:...;base64,`` prefix"""
    if not image_base64:
        raise UploadError("No image data provided")
    payload = image_base64
    if image_base64.startswith("data:"):
        _, sep, payload = image_base64.partition(",")
        if not sep:
            raise UploadError("No image data provided")
    try:
        image_bytes = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise UploadError("Image data is not valid base64")
    return image_bytes


def _check_upload(image_bytes: bytes, mime_type: str | None) -> None:
    if not image_bytes:
        raise UploadError("No image data provided")
    if len(image_bytes) > settings.max_upload_bytes:
        raise UploadError(f"Image exceeds the {settings.max_upload_bytes} byte upload limit")
    if not is_supported_mime_type(mime_type):
        raise UploadError(f"Unsupported file type: {mime_type or 'unknown'}. Upload an image (PNG, JPEG, WebP).")


def _parse_form_data(form_data: str | None) -> dict | None:
    if not form_data:
        return None
    try:
        parsed = json.loads(form_data)
    except ValueError:
        logger.warning("Ignoring formData that is not JSON")
        return None
    return parsed if isinstance(parsed, dict) else None


@router.post("/extract", response_model=InvoiceRecord)
async def extract(
    request: Request,
    file: UploadFile = File(None),
    form_data: str | None = Form(None, alias="formData"),
):
    """
    Extract invoice fields from an uploaded image with the hosted model.

    Accepts either:
    - multipart/form-data with ``file`` (and optional ``formData`` JSON string)
    - application/json ``{"imageBase64": ..., "fileType": ..., "formData": {...}}``

    Returns the normalized invoice (camelCase keys). Errors come back as
    ``{"error": ...}`` with 400 (bad upload) or 500 (model failure).
    """
    try:
        if file:
            # Multipart form-data upload
            image_bytes = await file.read()
            mime_type = file.content_type
            current_form = _parse_form_data(form_data)
        else:
            body = await request.body()
            if not body:
                raise UploadError("No image data provided")
            try:
                payload = ExtractJSONRequest.model_validate_json(body)
            except ValidationError:
                raise UploadError("Request body must be a multipart upload or JSON with imageBase64")
            image_bytes = _decode_image(payload.image_base64)
            mime_type = payload.file_type
            current_form = payload.form_data

        _check_upload(image_bytes, mime_type)
    except UploadError as e:
        logger.warning("Rejected extraction upload", reason=str(e))
        return _error(status.HTTP_400_BAD_REQUEST, str(e))

    try:
        client = InvoiceModelClient()
        raw = await run_in_threadpool(client.extract, image_bytes, mime_type, current_form)
        record = normalize_invoice(raw)
    except ModelResponseError as e:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e), raw=e.raw)
    except Exception as e:
        logger.exception("Extraction failed")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e) or "An unknown error occurred")

    logger.info(
        "Extracted invoice",
        invoice_number=record.invoice_number,
        vendor=record.vendor_name,
        item_count=len(record.items),
        total=record.total,
    )
    return record


@router.post(
    "/validate",
    response_model=ValidateSuccess,
    responses={400: {"model": ValidateFailure}, 500: {"model": ErrorResponse}},
)
async def validate(req: ValidateRequest):
    """
    Validate user-entered form values against the invoice image.

    With VALIDATION_MODE=deterministic (default) the image is extracted and
    compared locally by the reconciler; with VALIDATION_MODE=model the hosted
    model performs the comparison and its answer is sanitized.

    Example failure (400):
    {
        "errors": {
            "vendorName": "Vendor Name does not match the invoice. Expected 'Acme Corp', got 'Acme'."
        }
    }
    """
    try:
        image_bytes = _decode_image(req.image_base64)
        _check_upload(image_bytes, req.file_type)
    except UploadError as e:
        logger.warning("Rejected validation upload", reason=str(e))
        return _error(status.HTTP_400_BAD_REQUEST, str(e))

    logger.info(
        "Validation request received",
        mode=settings.validation_mode,
        strict_missing_field_policy=settings.strict_missing_field_policy,
        item_count=len(req.form_data.items),
        image_bytes=len(image_bytes),
    )

    try:
        client = InvoiceModelClient()
        if settings.validation_mode == "model":
            payload = await run_in_threadpool(client.validate, image_bytes, req.file_type, req.form_data.to_wire())
            outcome = coerce_model_outcome(payload)
        else:
            raw = await run_in_threadpool(client.extract, image_bytes, req.file_type)
            outcome = create_reconciler().reconcile(req.form_data, raw)
    except ModelResponseError as e:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e), raw=e.raw)
    except Exception as e:
        logger.exception("Validation failed")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e) or "An unknown error occurred")

    if not outcome.passed:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ValidateFailure(errors=outcome.errors).model_dump(),
        )
    return ValidateSuccess()

from pydantic import BaseModel, ConfigDict, Field

from ..models.invoice import InvoiceRecord, ValidationErrorSet


class ExtractJSONRequest(BaseModel):
    """JSON alternative to the multipart upload for /invoices/extract"""
    model_config = ConfigDict(populate_by_name=True)

    image_base64: str | None = Field(default=None, alias="imageBase64")
    file_type: str | None = Field(default=None, alias="fileType")
    form_data: dict | None = Field(default=None, alias="formData")  # Current form values, optional


class ValidateRequest(BaseModel):
    """Request body for /invoices/validate"""
    model_config = ConfigDict(populate_by_name=True)

    form_data: InvoiceRecord = Field(default_factory=InvoiceRecord, alias="formData")
    image_base64: str | None = Field(default=None, alias="imageBase64")
    file_type: str | None = Field(default=None, alias="fileType")


class ValidateSuccess(BaseModel):
    message: str = "Validation successful"


class ValidateFailure(BaseModel):
    errors: ValidationErrorSet


class ErrorResponse(BaseModel):
    error: str
    raw: str | None = None  # Model output, when it could not be parsed

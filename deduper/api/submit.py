"""Error report submission endpoint"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from deduper.errors import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["submit"])

METADATA_PART = "metadata"
STACKTRACE_PART = "stacktrace"
# Attachments come as "<name>-body" plus an optional "<name>-displayText"
ATTACHMENT_BODY = "body"
ATTACHMENT_DISPLAY_TEXT = "displayText"

JSON_TYPE = "application/json"
TEXT_TYPE = "text/plain"


class SubmissionMetadata(BaseModel):
    plugin_name: str = Field(alias="pluginName")
    plugin_version: str = Field(alias="pluginVersion")
    os_name: str = Field(alias="osName")
    java_version: str = Field(alias="javaVersion")
    java_vm_vendor: str = Field(alias="javaVmVendor")
    is_eap: bool = Field(alias="isEap")
    idea_build: str = Field(alias="ideaBuild")
    idea_version: str = Field(alias="ideaVersion")
    last_action: Optional[str] = Field(default=None, alias="lastAction")

    class Config:
        populate_by_name = True


@dataclass
class FormPart:
    """One part of a multipart/form-data body"""

    name: Optional[str]
    content_type: Optional[str] = None
    filename: Optional[str] = None
    data: bytes = b""

    @property
    def is_form_item(self) -> bool:
        return self.filename is None

    @property
    def mime_type(self) -> Optional[str]:
        if self.content_type is None:
            return None
        mime_type, _ = parse_options_header(self.content_type)
        return mime_type.decode("latin-1").lower()

    def text(self) -> str:
        charset = "utf-8"
        if self.content_type is not None:
            _, params = parse_options_header(self.content_type)
            charset = params.get(b"charset", b"utf-8").decode("latin-1")
        try:
            return self.data.decode(charset)
        except (LookupError, UnicodeDecodeError):
            raise ValidationError(f"{self.name} part is not valid {charset} text") from None


@dataclass
class SubmissionAttachment:
    display_text: Optional[str]
    body: str


@dataclass
class Submission:
    metadata: SubmissionMetadata
    stacktrace: str
    attachments: List[SubmissionAttachment] = field(default_factory=list)


class _PartCollector:
    """Callbacks for ``MultipartParser`` that collect whole parts in memory"""

    def __init__(self):
        self.parts: List[FormPart] = []
        self._headers: Dict[str, str] = {}
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._data = bytearray()

    def callbacks(self):
        return {
            "on_part_begin": self.on_part_begin,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
        }

    def on_part_begin(self):
        self._headers = {}
        self._data = bytearray()

    def on_header_field(self, data: bytes, start: int, end: int):
        self._header_field += data[start:end]

    def on_header_value(self, data: bytes, start: int, end: int):
        self._header_value += data[start:end]

    def on_header_end(self):
        name = bytes(self._header_field).decode("latin-1").lower()
        self._headers[name] = bytes(self._header_value).decode("latin-1")
        self._header_field = bytearray()
        self._header_value = bytearray()

    def on_part_data(self, data: bytes, start: int, end: int):
        self._data += data[start:end]

    def on_part_end(self):
        _, options = parse_options_header(self._headers.get("content-disposition"))
        name = options.get(b"name")
        filename = options.get(b"filename")
        self.parts.append(
            FormPart(
                name=name.decode("utf-8") if name else None,
                content_type=self._headers.get("content-type"),
                filename=filename.decode("utf-8") if filename is not None else None,
                data=bytes(self._data),
            )
        )


def parse_multipart(body: bytes, content_type: Optional[str]) -> List[FormPart]:
    """Split a multipart/form-data body into its parts"""
    mime_type, params = parse_options_header(content_type)
    if mime_type.lower() != b"multipart/form-data":
        raise ValidationError("Request is not multipart/form-data")
    boundary = params.get(b"boundary")
    if not boundary:
        raise ValidationError("No multipart boundary")

    collector = _PartCollector()
    parser = MultipartParser(boundary, collector.callbacks())
    try:
        parser.write(body)
        parser.finalize()
    except MultipartParseError as e:
        raise ValidationError(f"Malformed multipart body: {e}") from None
    return collector.parts


def _form_item(
    parts: Dict[str, FormPart], name: str, content_type: str, required: bool = True
) -> Optional[str]:
    """Remove and return the text of a form field; file uploads and other content types are rejected"""
    if name not in parts:
        if required:
            raise ValidationError(f"No {name} part found")
        return None
    part = parts.pop(name)
    if not part.is_form_item:
        raise ValidationError(f"{name} part is not a form-item")
    # Parts without a Content-Type are accepted
    if part.mime_type is not None and part.mime_type != content_type:
        raise ValidationError(f"{name} must have a Content-Type of {content_type}")
    return part.text()


def parse_submission(parts: Dict[str, FormPart]) -> Submission:
    """Build a submission from its named multipart parts"""
    parts = dict(parts)

    metadata_text = _form_item(parts, METADATA_PART, JSON_TYPE)
    try:
        metadata = SubmissionMetadata.model_validate_json(metadata_text)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {METADATA_PART} part: {e.error_count()} errors") from None

    stacktrace = _form_item(parts, STACKTRACE_PART, TEXT_TYPE)

    attachments = []
    for name in sorted({key.split("-", 1)[0] for key in parts}):
        body = _form_item(parts, f"{name}-{ATTACHMENT_BODY}", TEXT_TYPE, required=False)
        if body is None:
            raise ValidationError(f"Unknown attachment part name: {name}")
        display_text = _form_item(parts, f"{name}-{ATTACHMENT_DISPLAY_TEXT}", TEXT_TYPE, required=False)
        attachments.append(SubmissionAttachment(display_text=display_text, body=body))

    if parts:
        raise ValidationError(f"Unknown part name: {sorted(parts)[0]}")

    return Submission(metadata=metadata, stacktrace=stacktrace, attachments=attachments)


async def read_submission(request: Request) -> Submission:
    """Parse and verify the multipart body of a submission request"""
    content = await request.body()
    parts: Dict[str, FormPart] = {}
    for part in parse_multipart(content, request.headers.get("content-type")):
        if not part.name:
            raise ValidationError("Unnamed part")
        if part.name in parts:
            raise ValidationError(f"Duplicate part name: {part.name}")
        parts[part.name] = part
    return parse_submission(parts)


@router.post("/submit", status_code=201)
async def submit_error_report(request: Request):
    """Accept an error report from the IDE plugin"""
    submission = await read_submission(request)
    logger.info(
        f"Received error report from {submission.metadata.plugin_name} {submission.metadata.plugin_version} "
        f"with {len(submission.attachments)} attachments"
    )
    return {"message": "Success"}

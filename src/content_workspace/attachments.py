import base64
import mimetypes
from dataclasses import dataclass
from pathlib import Path

from .messages import InlineDataPart, Part, TextPart

TEXT_ATTACHMENT_EXTENSIONS = {
    ".txt", ".md", ".markdown", ".csv", ".json", ".yaml", ".yml", ".xml", ".html",
    ".py", ".js", ".ts", ".tsx", ".java", ".go", ".rs", ".c", ".cpp", ".h", ".tex", ".log",
}
TEXT_MIME_TYPES = {"application/json", "application/xml", "application/x-yaml", "application/javascript"}


class AttachmentError(ValueError):
    pass


class UnsupportedAttachmentError(AttachmentError):
    pass


class EmptyAttachmentError(AttachmentError):
    pass


@dataclass(frozen=True)
class ChatFile:
    name: str
    content: bytes
    mime_type: str = ""


def resolve_mime_type(chat_file: ChatFile) -> str:
    mime_type = (chat_file.mime_type or "").strip().lower()
    if mime_type:
        return mime_type
    guessed, _ = mimetypes.guess_type(chat_file.name or "")
    return (guessed or "application/octet-stream").lower()


def file_to_part(chat_file: ChatFile) -> Part:
    if not chat_file.content:
        raise EmptyAttachmentError(f"Attachment is empty: {chat_file.name}")

    mime_type = resolve_mime_type(chat_file)
    if mime_type.startswith("image/"):
        encoded = base64.b64encode(chat_file.content).decode("ascii")
        return InlineDataPart(mime_type=mime_type, data=encoded)

    if not _is_text_like(chat_file.name, mime_type):
        raise UnsupportedAttachmentError(
            f"Unsupported attachment type: {mime_type} ({chat_file.name or 'unnamed'})"
        )

    text = _decode_bytes(chat_file.content)
    return TextPart(text=wrap_document(chat_file.name, text))


def wrap_document(name: str, text: str) -> str:
    return f"--- DOCUMENT START: {name} ---\n\n{text}\n\n--- DOCUMENT END: {name} ---"


def _is_text_like(filename: str, mime_type: str) -> bool:
    if mime_type.startswith("text/") or mime_type in TEXT_MIME_TYPES:
        return True
    return Path((filename or "").strip()).suffix.lower() in TEXT_ATTACHMENT_EXTENSIONS


def _decode_bytes(content_bytes: bytes) -> str:
    encodings = ("utf-8-sig", "utf-8", "cp932", "latin-1")
    for encoding in encodings:
        try:
            return content_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
    return content_bytes.decode("utf-8", errors="replace")

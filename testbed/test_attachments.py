import base64

import pytest

from src.content_workspace.attachments import (
    ChatFile,
    EmptyAttachmentError,
    UnsupportedAttachmentError,
    file_to_part,
    resolve_mime_type,
)
from src.content_workspace.messages import InlineDataPart, TextPart


def test_image_becomes_inline_base64_part():
    part = file_to_part(ChatFile(name="diagram.png", content=b"\x89PNG\r\n", mime_type="image/png"))
    assert isinstance(part, InlineDataPart)
    assert part.mime_type == "image/png"
    assert base64.b64decode(part.data) == b"\x89PNG\r\n"


def test_text_file_is_wrapped_with_document_markers():
    part = file_to_part(ChatFile(name="spec.md", content="# Title\n本文".encode("utf-8")))
    assert isinstance(part, TextPart)
    assert part.text == (
        "--- DOCUMENT START: spec.md ---\n\n# Title\n本文\n\n--- DOCUMENT END: spec.md ---"
    )


def test_cp932_text_is_decoded():
    part = file_to_part(ChatFile(name="memo.txt", content="メモ".encode("cp932")))
    assert "メモ" in part.text


def test_mime_type_is_guessed_from_name():
    assert resolve_mime_type(ChatFile(name="photo.jpg", content=b"x")) == "image/jpeg"
    assert resolve_mime_type(ChatFile(name="blob", content=b"x")) == "application/octet-stream"


def test_empty_and_binary_attachments_are_rejected():
    with pytest.raises(EmptyAttachmentError):
        file_to_part(ChatFile(name="empty.txt", content=b""))
    with pytest.raises(UnsupportedAttachmentError):
        file_to_part(ChatFile(name="archive.zip", content=b"PK\x03\x04"))

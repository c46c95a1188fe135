"""Mime type helpers shared by upload validation and text extraction."""


def base_mime_type(mime_type: str) -> str:
    """``"Text/Plain; charset=utf-8"`` -> ``"text/plain"``."""
    return mime_type.split(";", 1)[0].strip().lower()

"""
Filename helpers for display names of stored files.
"""

import re

MAX_BASENAME_LENGTH = 20

_UNSAFE_CHARS = re.compile(r"[^\w.\-]", re.UNICODE)
_REPEATED_UNDERSCORES = re.compile(r"_+")


def basename(name: str) -> str:
    parts = [p for p in name.replace("\\", "/").split("/") if p]
    return parts[-1] if parts else ""


def get_file_extension(filename: str) -> str:
    """Lower-cased extension including the dot, or '' if there is none."""
    if not filename:
        return ""
    name = basename(filename)
    last_dot = name.rfind(".")
    if last_dot <= 0:
        return ""
    return name[last_dot:].lower()


def sanitize_filename(filename: str) -> str:
    """Replace anything but letters, digits, '.', '_' and '-' with '_'."""
    if not filename:
        return "file"
    sanitized = _UNSAFE_CHARS.sub("_", basename(filename))
    sanitized = _REPEATED_UNDERSCORES.sub("_", sanitized).strip("_")
    return sanitized or "file"


def generate_stored_name(record_id: str, original_name: str) -> str:
    """
    Build the display name ``<id>_<short safe name><ext>``.

    Args:
        record_id: Record identifier
        original_name: Client-supplied filename

    Returns:
        Filesystem- and header-safe filename
    """
    clean = sanitize_filename(original_name)
    extension = get_file_extension(clean)
    stem = clean[: len(clean) - len(extension)] if extension else clean
    stem = stem[:MAX_BASENAME_LENGTH] or "file"
    return f"{record_id}_{stem}{extension}"

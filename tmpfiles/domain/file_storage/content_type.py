"""
Content Type Detection

Identifies uploads by their leading magic bytes, so the MIME allow-list is
checked against what the bytes are and not only against what the client
declared.
"""

from typing import Optional

import filetype

# filetype never inspects more than this many leading bytes
SNIFF_SIZE = 8192


def sniff_mime_type(head: bytes) -> Optional[str]:
    """
    Detect the MIME type of content from its first bytes.

    Returns:
        The detected MIME type, or None for unrecognized content (plain
        text, JSON and other formats without a signature)
    """
    if not head:
        return None
    kind = filetype.guess(head)
    return kind.mime if kind is not None else None

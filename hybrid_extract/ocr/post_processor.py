"""
Text post-processing

Cleans raw model output (code fences, control characters) and normalizes
text extracted from a native text layer.
"""

import re
import logging

logger = logging.getLogger(__name__)

# Markdown fence wrapping the whole answer, e.g. ```text ... ```
_FENCE = re.compile(r'^\s*```[\w-]*[ \t]*\n(.*?)\n?```\s*$', re.DOTALL)

# C0/C1 control characters except tab, newline and carriage return
_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]')


def clean_ocr_output(text: str) -> str:
    """
    Strip wrapping code fences and control characters from model output

    Args:
        text: Raw text returned by a vision service

    Returns:
        Cleaned, trimmed text
    """
    if not text:
        return ""

    match = _FENCE.match(text)
    if match:
        logger.debug("Removing markdown code fence from OCR output")
        text = match.group(1)

    text = _CONTROL_CHARS.sub('', text)
    return text.strip()


def clean_extracted_text(text: str) -> str:
    """
    Normalize native-layer text: line endings, trailing spaces, runs of
    blank lines and repeated spaces inside lines.
    """
    if not text:
        return ""

    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = _CONTROL_CHARS.sub('', text)

    # Collapse repeated spaces/tabs inside lines, drop trailing whitespace
    lines = [re.sub(r'[ \t]{2,}', ' ', line).rstrip() for line in text.split('\n')]
    text = '\n'.join(lines)

    # At most one blank line between paragraphs
    text = re.sub(r'\n{3,}', '\n\n', text)

    return text.strip()

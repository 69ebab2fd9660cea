"""
Prompts sent to vision OCR services
"""

from typing import Optional

EXTRACT_TEXT = """Extract ALL text content from this image. Follow these guidelines:

1. **Text Accuracy**: Preserve exact text, including:
   - All punctuation marks
   - Special characters and symbols
   - Numbers and dates
   - Headers and footers

2. **Structure Preservation**: Maintain document structure:
   - Line breaks and paragraphs
   - Lists and bullet points
   - Tables (use markdown format)
   - Headings and subheadings

3. **Layout Handling**: For multi-column layouts:
   - Process columns from left to right
   - Clearly separate content from different columns
   - Maintain reading order

4. **Special Content**: Handle:
   - Tables: Use markdown table format
   - Charts/Graphs: Describe and extract visible text
   - Handwritten notes: Include if legible
   - Watermarks: Ignore

5. **Output Format**: Return only the extracted text content without any commentary or metadata.

Remember: Accuracy is paramount. If text is unclear, make your best attempt but don't invent content."""

# Display names for common language hints
LANGUAGE_NAMES = {
    'en': 'English',
    'vi': 'Vietnamese',
    'fr': 'French',
    'de': 'German',
    'es': 'Spanish',
    'it': 'Italian',
    'pt': 'Portuguese',
    'nl': 'Dutch',
    'ru': 'Russian',
    'ja': 'Japanese',
    'ko': 'Korean',
    'zh': 'Chinese',
}


def build_prompt(language: Optional[str] = None, base: str = EXTRACT_TEXT) -> str:
    """Append a language hint to the base prompt. No hint for empty language."""
    if not language:
        return base

    name = LANGUAGE_NAMES.get(language.lower(), language)
    return (
        f"{base}\n\nThe document is expected to be written in {name}. "
        f"Preserve all diacritics and script-specific characters exactly."
    )

"""Vision OCR Engine Implementations"""

__all__ = ['GeminiEngine', 'TesseractEngine']


# Engines are imported on demand so that selecting one does not require the
# other's SDK to be importable
def __getattr__(name):
    if name == "GeminiEngine":
        from .gemini_engine import GeminiEngine
        return GeminiEngine
    if name == "TesseractEngine":
        from .tesseract_engine import TesseractEngine
        return TesseractEngine
    raise AttributeError(f"module 'hybrid_extract.ocr.engines' has no attribute '{name}'")

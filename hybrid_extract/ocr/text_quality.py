"""
Text Layer Quality Detection
Decides whether extracted text is real content or garbage that should be re-OCR'd.

Language-agnostic: words are Unicode letter runs split on whitespace,
punctuation and symbol boundaries, so no single-language tokenizer is needed.
"""

import re
import math
import logging
import unicodedata
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, asdict
from typing import Callable, Iterable, List, Optional, Tuple, Dict, Any

logger = logging.getLogger(__name__)

# Unicode general categories treated as word boundaries (punctuation, symbols, separators)
_BOUNDARY_CATEGORIES = ('P', 'S', 'Z')


# ============================================================================
# Tokenizer strategies
# ============================================================================

class Tokenizer(ABC):
    """Splits text into word tokens"""

    @abstractmethod
    def tokenize(self, text: str) -> List[str]:
        pass


def _has_letter(token: str) -> bool:
    return any(c.isalpha() for c in token)


class UnicodeTokenizer(Tokenizer):
    """
    Default tokenizer. Splits on whitespace, punctuation, symbols and control
    characters, and keeps lowercase tokens containing at least one letter from
    any script.
    """

    def tokenize(self, text: str) -> List[str]:
        words = []
        current = []
        for ch in text.lower():
            category = unicodedata.category(ch)
            if ch.isspace() or category[0] in _BOUNDARY_CATEGORIES or category == 'Cc':
                if current:
                    words.append(''.join(current))
                    current = []
            else:
                current.append(ch)
        if current:
            words.append(''.join(current))

        return [w for w in words if _has_letter(w)]


class CallableTokenizer(Tokenizer):
    """
    Adapter for a language-specific tokenizer function.

    Selected explicitly at construction time, e.g.
    TextQualityValidator(tokenizer=CallableTokenizer(my_lib.word_tokenize)).
    Tokens without letters are dropped so metrics stay comparable.
    """

    def __init__(self, func: Callable[[str], Iterable[str]]):
        self.func = func

    def tokenize(self, text: str) -> List[str]:
        return [t.lower() for t in self.func(text) if t and _has_letter(t)]


# ============================================================================
# Entropy strategies
# ============================================================================

class EntropyCalculator(ABC):
    """Computes a randomness score for text"""

    @abstractmethod
    def calculate(self, text: str) -> float:
        pass


class ShannonEntropy(EntropyCalculator):
    """Shannon entropy in bits per character over lowercase character frequencies"""

    def calculate(self, text: str) -> float:
        if not text:
            return 0.0

        counts = Counter(text.lower())
        length = len(text)
        entropy = 0.0
        for count in counts.values():
            p = count / length
            entropy -= p * math.log2(p)
        return entropy


class ScaledEntropy(EntropyCalculator):
    """
    Wraps an external entropy estimator that returns total bits for a string
    and divides by `scale` to bring it onto a 0-10-ish range.
    """

    def __init__(self, func: Callable[[str], float], scale: float = 10.0):
        self.func = func
        self.scale = scale

    def calculate(self, text: str) -> float:
        return float(self.func(text)) / self.scale


# ============================================================================
# Results
# ============================================================================

@dataclass(frozen=True)
class ValidationMetrics:
    """Metrics for evaluating text layer quality"""
    char_length: int
    word_count: int
    word_density: float  # word_count / char_length
    entropy: float
    unique_char_count: int
    average_word_length: float
    repetitive_patterns: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ValidationResult:
    """Verdict for one piece of text. is_valid <=> confidence >= threshold."""
    confidence: float
    is_valid: bool
    reason: str
    metrics: ValidationMetrics

    def to_dict(self) -> Dict[str, Any]:
        return {
            'confidence': self.confidence,
            'is_valid': self.is_valid,
            'reason': self.reason,
            'metrics': self.metrics.to_dict(),
        }


@dataclass(frozen=True)
class ValidationConfig:
    """Configurable thresholds and deduction weights for text quality validation"""
    min_absolute_length: int = 10
    min_word_count: int = 3
    min_word_density: float = 0.05
    min_text_entropy: float = 1.5
    min_average_word_length: float = 2.5
    max_average_word_length: float = 15.0
    confidence_threshold: float = 0.5

    # Repetition detection
    min_char_run: int = 5  # same character N times in a row
    min_pattern_repeats: int = 3  # 2-4 char substring N times in a row
    max_word_share: float = 0.30  # one word above this share of all tokens

    # Character diversity
    diversity_window: int = 50
    min_char_diversity: float = 0.25

    # Deduction weights (empirical)
    critical_density_confidence: float = 0.1
    low_word_count_penalty: float = 0.5
    short_words_penalty: float = 0.3
    long_words_penalty: float = 0.4
    low_entropy_penalty: float = 0.4
    repetition_penalty: float = 0.3
    low_diversity_penalty: float = 0.2

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# Validator
# ============================================================================

class TextQualityValidator:
    """
    Validates quality of extracted text.

    Pure and deterministic: the same input always produces the same result.
    """

    def __init__(
        self,
        config: Optional[ValidationConfig] = None,
        tokenizer: Optional[Tokenizer] = None,
        entropy_calculator: Optional[EntropyCalculator] = None
    ):
        self.config = config or ValidationConfig()
        self.tokenizer = tokenizer or UnicodeTokenizer()
        self.entropy_calculator = entropy_calculator or ShannonEntropy()
        self._fallback_entropy = ShannonEntropy()

        self._char_run = re.compile(r'(.)\1{%d,}' % (self.config.min_char_run - 1), re.DOTALL)
        self._pattern_run = re.compile(
            r'(.{2,4})\1{%d,}' % (self.config.min_pattern_repeats - 1), re.DOTALL
        )

    def validate(self, text: Optional[str]) -> ValidationResult:
        """
        Determine whether text is meaningful content.

        Never raises: empty or malformed input yields a failing verdict.
        """
        normalized = self.normalize(text)
        metrics = self._calculate_metrics(normalized)

        if metrics.char_length < self.config.min_absolute_length:
            return ValidationResult(
                confidence=0.0,
                is_valid=False,
                reason=f"Text too short for meaningful analysis ({metrics.char_length} chars)",
                metrics=metrics
            )

        confidence, reason = self._apply_rules(metrics)
        is_valid = confidence >= self.config.confidence_threshold

        logger.debug(
            f"Text quality: confidence={confidence:.2f}, valid={is_valid}, "
            f"chars={metrics.char_length}, words={metrics.word_count}, "
            f"density={metrics.word_density:.4f}, entropy={metrics.entropy:.2f}"
        )

        return ValidationResult(
            confidence=confidence,
            is_valid=is_valid,
            reason=reason,
            metrics=metrics
        )

    @staticmethod
    def normalize(text: Optional[str]) -> str:
        """NFC-normalize, trim and collapse whitespace runs to single spaces"""
        if not text:
            return ""
        normalized = unicodedata.normalize('NFC', str(text)).strip()
        return re.sub(r'\s+', ' ', normalized)

    def _calculate_metrics(self, text: str) -> ValidationMetrics:
        """Calculate text metrics on already-normalized text"""
        char_length = len(text)
        words = self.tokenizer.tokenize(text)
        word_count = len(words)

        return ValidationMetrics(
            char_length=char_length,
            word_count=word_count,
            word_density=word_count / char_length if char_length > 0 else 0.0,
            entropy=self._calculate_entropy(text),
            unique_char_count=len(set(text.lower())),
            average_word_length=(
                sum(len(w) for w in words) / word_count if word_count > 0 else 0.0
            ),
            repetitive_patterns=self._detect_repetitive_patterns(text, words)
        )

    def _calculate_entropy(self, text: str) -> float:
        """Use the configured calculator, falling back to raw Shannon entropy"""
        if isinstance(self.entropy_calculator, ShannonEntropy):
            return self.entropy_calculator.calculate(text)

        try:
            return self.entropy_calculator.calculate(text)
        except (ValueError, TypeError, ArithmeticError) as e:
            logger.debug(f"Entropy calculator failed ({e}), using Shannon entropy")
            return self._fallback_entropy.calculate(text)

    def _detect_repetitive_patterns(self, text: str, words: List[str]) -> bool:
        """Repeated characters, repeated short substrings, or one dominant word"""
        if self._char_run.search(text):
            return True

        if self._pattern_run.search(text):
            return True

        if words:
            top_count = Counter(words).most_common(1)[0][1]
            if top_count / len(words) > self.config.max_word_share:
                return True

        return False

    def _apply_rules(self, metrics: ValidationMetrics) -> Tuple[float, str]:
        """
        Apply deductions in a fixed order. The returned reason is the message
        of the last rule that fired.
        """
        cfg = self.config
        confidence = 1.0
        reason = "Valid text content"

        if metrics.word_density < cfg.min_word_density:
            return (
                cfg.critical_density_confidence,
                f"Critical: very low word density ({metrics.word_density:.4f}). "
                f"Likely meaningless content or pattern."
            )

        if metrics.word_count < cfg.min_word_count:
            confidence -= cfg.low_word_count_penalty
            reason = f"Low word count ({metrics.word_count}). May not contain meaningful content."

        if metrics.average_word_length < cfg.min_average_word_length:
            confidence -= cfg.short_words_penalty
            reason = (
                f"Very short average word length ({metrics.average_word_length:.1f}). "
                f"Likely fragmented text."
            )
        elif metrics.average_word_length > cfg.max_average_word_length:
            confidence -= cfg.long_words_penalty
            reason = (
                f"Unusually long average word length ({metrics.average_word_length:.1f}). "
                f"Likely corrupted text."
            )

        if metrics.entropy < cfg.min_text_entropy:
            confidence -= cfg.low_entropy_penalty
            reason = f"Low entropy ({metrics.entropy:.2f}) suggests repetitive or patterned text."

        if metrics.repetitive_patterns:
            confidence -= cfg.repetition_penalty
            reason = "Repetitive patterns detected. Likely generated or meaningless content."

        diversity = metrics.unique_char_count / min(metrics.char_length, cfg.diversity_window)
        if diversity < cfg.min_char_diversity:
            confidence -= cfg.low_diversity_penalty
            reason = f"Low character diversity ({diversity:.2f}). Limited vocabulary detected."

        return max(0.0, min(1.0, confidence)), reason


def generate_quality_report(result: ValidationResult) -> str:
    """Generate human-readable quality report"""
    m = result.metrics
    status = 'VALID' if result.is_valid else 'INVALID - OCR RECOMMENDED'
    return f"""
Text Quality Report:
-------------------
Characters: {m.char_length}
Words: {m.word_count}
Word Density: {m.word_density:.4f}
Avg Word Length: {m.average_word_length:.1f}
Entropy: {m.entropy:.2f}
Unique Chars: {m.unique_char_count}
Repetitive: {m.repetitive_patterns}

Confidence: {result.confidence:.2%}
Reason: {result.reason}
Status: {status}
"""


def validate_text_quality(text: str, config: Optional[ValidationConfig] = None) -> ValidationResult:
    """Convenience function to validate text with default strategies"""
    return TextQualityValidator(config).validate(text)

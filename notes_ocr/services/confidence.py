"""
Эвристическая оценка уверенности распознавания.

ВАЖНО: это грубая оценка по внешним признакам текста (длина, пунктуация,
заглавные слова, количество строк, маркеры неразборчивого текста),
а не статистическая мера качества распознавания. Пороги фиксированы:
их изменение меняет значения, которые видит пользователь.
"""

import re

BASE_CONFIDENCE = 0.7

_PUNCTUATION_RE = re.compile(r"[.!?]")
_CAPITALIZED_WORD_RE = re.compile(r"\b[A-Z][a-z]+\b")

UNCLEAR_MARKERS = ("[unclear]", "[?]")
NOISE_MARKERS = ("***", "???")
ERROR_MARKER = "[Error"


def calculate_confidence(text: str) -> float:
    """
    Считает уверенность распознавания страницы по тексту.

    Функция чистая: один и тот же текст всегда даёт одно и то же значение.

    Args:
        text: распознанный текст страницы

    Returns:
        float: уверенность в диапазоне [0, 1]
    """
    confidence = BASE_CONFIDENCE

    # Признаки, повышающие уверенность
    if len(text) > 50:
        confidence += 0.1
    if _PUNCTUATION_RE.search(text):
        confidence += 0.05
    if len(_CAPITALIZED_WORD_RE.findall(text)) > 3:
        confidence += 0.05
    if len(text.split("\n")) > 2:
        confidence += 0.05

    # Признаки, понижающие уверенность
    if ERROR_MARKER in text:
        confidence = 0.0
    if any(marker in text for marker in UNCLEAR_MARKERS):
        confidence -= 0.2
    if len(text) < 20:
        confidence -= 0.2
    if any(marker in text for marker in NOISE_MARKERS):
        confidence -= 0.1

    return max(0.0, min(1.0, confidence))

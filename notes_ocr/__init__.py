"""
Notes OCR — распознавание рукописных конспектов из PDF.

Одно FastAPI приложение:
    - Приём PDF и проверка файла
    - Пайплайн: split -> нормализация -> распознавание внешним API
    - Поток прогресса text/event-stream с итоговым результатом

Рендеринг выполняется пакетами в threadpool, распознавание — пакетами
асинхронных запросов с паузой между пакетами.
"""

__version__ = "1.0.0"

from notes_ocr.config import settings
from notes_ocr.schemas import DocumentResult, PageResult, ProgressEvent

__all__ = [
    "__version__",
    "settings",
    "DocumentResult",
    "PageResult",
    "ProgressEvent",
]

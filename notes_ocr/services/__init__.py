"""
Сервисы обработки документа.

Модули:
    - pdf_processor: рендеринг страниц PDF и подсчёт страниц
    - image_normalizer: подготовка изображения страницы
    - confidence: эвристическая уверенность распознавания
    - recognition_client: клиент внешнего API распознавания
    - document_processor: пакетная обработка документа + прогресс
    - progress_stream: поток событий text/event-stream
"""

from notes_ocr.services.confidence import calculate_confidence
from notes_ocr.services.document_processor import DocumentProcessor, build_document_result
from notes_ocr.services.image_normalizer import normalize_image
from notes_ocr.services.pdf_processor import PdfRasterizer, discover_page_count
from notes_ocr.services.progress_stream import format_sse, stream_progress
from notes_ocr.services.recognition_client import RecognitionClient

__all__ = [
    "calculate_confidence",
    "DocumentProcessor",
    "build_document_result",
    "normalize_image",
    "PdfRasterizer",
    "discover_page_count",
    "format_sse",
    "stream_progress",
    "RecognitionClient",
]

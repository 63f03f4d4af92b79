"""
Оркестратор обработки документа.

Координирует пайплайн:
    1. Подсчёт страниц (метаданные PDF или перебор)
    2. Split: PDF -> images пакетами по raster_batch_size страниц
       (внутри пакета — параллельно, пакеты — последовательно)
    3. Нормализация каждого изображения
    4. Распознавание пакетами по recognition_batch_size страниц
       с паузой между пакетами (rate limit внешнего API)
    5. Сборка результата: сортировка по номеру страницы, общий текст,
       средняя уверенность

Шкала прогресса:
    0-10   загрузка и проверка файла
    10-30  подготовка рендеринга (подсчёт страниц)
    30-80  рендеринг страниц (линейно по количеству страниц)
    80-90  распознавание (линейно по количеству страниц)
    90-100 финализация; 100% приходит только с событием complete

Рендеринг и нормализация блокируют поток (poppler, Pillow), поэтому
выполняются в threadpool. Запросы к API — обычный async I/O.
"""

import asyncio
import logging
import time
import uuid
from typing import Callable, Optional, Protocol

from starlette.concurrency import run_in_threadpool

from notes_ocr.config import settings
from notes_ocr.exceptions import NoPagesError
from notes_ocr.schemas import (
    DocumentMetadata,
    DocumentResult,
    PageImage,
    PageResult,
    ProcessingStage,
    ProgressUpdate,
)
from notes_ocr.services.image_normalizer import normalize_image
from notes_ocr.services.pdf_processor import Rasterizer, discover_page_count

logger = logging.getLogger(__name__)

PAGE_BREAK = "\n\n--- Page Break ---\n\n"

# Событие progress никогда не доходит до 100: 100% бывает только у complete
MAX_PROGRESS_PERCENT = 99

ProgressCallback = Callable[[ProgressUpdate], None]

_STAGE_ORDER = [
    ProcessingStage.UPLOADING,
    ProcessingStage.RASTERIZING,
    ProcessingStage.RECOGNIZING,
    ProcessingStage.FINALIZING,
    ProcessingStage.COMPLETE,
]


class Recognizer(Protocol):
    """Граница клиента распознавания, которую использует оркестратор."""

    async def recognize(self, image_bytes: bytes, page_number: int) -> PageResult: ...


class ProgressTracker:
    """
    Этап обработки и монотонный процент прогресса.

    Этапы меняются только вперёд, процент не убывает.
    """

    def __init__(self, on_progress: Optional[ProgressCallback] = None) -> None:
        self._on_progress = on_progress
        self.stage = ProcessingStage.UPLOADING
        self.percent = 0

    def advance(self, stage: ProcessingStage) -> None:
        if self.stage in (ProcessingStage.COMPLETE, ProcessingStage.FAILED):
            raise ValueError(f"Processing already finished with stage {self.stage.value}")
        if stage is not ProcessingStage.FAILED and (
            _STAGE_ORDER.index(stage) < _STAGE_ORDER.index(self.stage)
        ):
            raise ValueError(
                f"Cannot move from stage {self.stage.value} back to {stage.value}"
            )
        self.stage = stage

    def report(self, percent: float, step: str) -> None:
        self.percent = max(self.percent, min(MAX_PROGRESS_PERCENT, round(percent)))
        if self._on_progress is not None:
            self._on_progress(ProgressUpdate(progress=self.percent, step=step))


class DocumentProcessor:
    """
    Пакетная обработка одного документа.

    Args:
        rasterizer: рендерер страниц PDF
        recognizer: клиент распознавания
        raster_batch_size: страниц в пакете рендеринга
        recognition_batch_size: страниц в пакете распознавания
        batch_delay_seconds: пауза между пакетами распознавания
        max_pages: верхняя граница количества страниц
    """

    def __init__(
        self,
        rasterizer: Rasterizer,
        recognizer: Recognizer,
        raster_batch_size: Optional[int] = None,
        recognition_batch_size: Optional[int] = None,
        batch_delay_seconds: Optional[float] = None,
        max_pages: Optional[int] = None,
    ) -> None:
        self.rasterizer = rasterizer
        self.recognizer = recognizer
        self.raster_batch_size = raster_batch_size or settings.raster_batch_size
        self.recognition_batch_size = (
            recognition_batch_size or settings.recognition_batch_size
        )
        self.batch_delay_seconds = (
            batch_delay_seconds
            if batch_delay_seconds is not None
            else settings.recognition_batch_delay_seconds
        )
        self.max_pages = max_pages or settings.max_pages

    async def process(
        self,
        pdf_bytes: bytes,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DocumentResult:
        """
        Обрабатывает документ целиком.

        Ошибки распознавания отдельных страниц не прерывают обработку
        (клиент возвращает страницу-заглушку). Ошибки документа
        (нет страниц, сбой рендерера) пробрасываются наружу.

        Args:
            pdf_bytes: содержимое PDF файла
            on_progress: callback для событий прогресса

        Returns:
            DocumentResult: результат с отсортированными страницами

        Raises:
            NoPagesError: если не удалось получить ни одной страницы
            RasterizationError: если документ не удалось прочитать
        """
        tracker = ProgressTracker(on_progress)
        total_start = time.perf_counter()

        logger.info("=" * 60)
        logger.info("НОВЫЙ ДОКУМЕНТ")
        logger.info(f"   Размер: {len(pdf_bytes) / (1024 * 1024):.2f} MB")
        logger.info("=" * 60)

        try:
            tracker.report(0, "Starting PDF processing")

            # 1-3. Split + нормализация
            tracker.advance(ProcessingStage.RASTERIZING)
            split_start = time.perf_counter()
            page_images = await self._rasterize(pdf_bytes, tracker)
            split_duration = int((time.perf_counter() - split_start) * 1000)
            logger.info(f"   Split: {len(page_images)} страниц за {split_duration}ms")

            if not page_images:
                raise NoPagesError("No pages could be processed from the PDF")

            # 4. Распознавание
            tracker.advance(ProcessingStage.RECOGNIZING)
            ocr_start = time.perf_counter()
            pages = await self._recognize(page_images, tracker)
            ocr_duration = int((time.perf_counter() - ocr_start) * 1000)
            logger.info(f"   OCR: {ocr_duration}ms")

            # 5. Сборка результата
            tracker.advance(ProcessingStage.FINALIZING)
            tracker.report(90, "Finalizing text extraction")
            total_duration = int((time.perf_counter() - total_start) * 1000)
            result = build_document_result(pages, total_duration)
            tracker.advance(ProcessingStage.COMPLETE)
        except Exception:
            tracker.advance(ProcessingStage.FAILED)
            raise

        failed_pages = [p.page_number for p in result.pages if p.confidence_score == 0]
        logger.info("=" * 60)
        logger.info("ОБРАБОТКА ЗАВЕРШЕНА")
        logger.info(f"   id: {result.id}")
        logger.info(f"   Страниц: {result.metadata.total_pages}")
        logger.info(f"   Символов: {len(result.full_text)}")
        logger.info(f"   Средняя уверенность: {result.metadata.average_confidence:.2f}")
        if failed_pages:
            logger.info(f"   Страницы с нулевой уверенностью: {failed_pages}")
        logger.info(f"   ИТОГО: {total_duration}ms")
        logger.info("=" * 60)

        return result

    async def _rasterize(
        self,
        pdf_bytes: bytes,
        tracker: ProgressTracker,
    ) -> list[PageImage]:
        tracker.report(10, "Analyzing PDF structure")

        total = await run_in_threadpool(
            discover_page_count,
            self.rasterizer,
            pdf_bytes,
            self.max_pages,
        )
        if total == 0:
            return []

        tracker.report(30, f"Converting {total} pages")

        page_images: list[PageImage] = []
        for batch_start in range(1, total + 1, self.raster_batch_size):
            batch = range(batch_start, min(batch_start + self.raster_batch_size, total + 1))
            results = await asyncio.gather(
                *(self._render_page(pdf_bytes, page_number) for page_number in batch)
            )
            page_images.extend(image for image in results if image is not None)

            done = batch[-1]
            tracker.report(30 + done / total * 50, f"Processed {done} of {total} pages")

        return page_images

    async def _render_page(
        self,
        pdf_bytes: bytes,
        page_number: int,
    ) -> Optional[PageImage]:
        try:
            image = await run_in_threadpool(
                self.rasterizer.render_page, pdf_bytes, page_number
            )
            data = await run_in_threadpool(normalize_image, image)
        except Exception as e:
            # Страница пропускается, остальные обрабатываются
            logger.warning(f"Не удалось отрендерить страницу {page_number}: {e}")
            return None

        return PageImage(page_number=page_number, data=data)

    async def _recognize(
        self,
        page_images: list[PageImage],
        tracker: ProgressTracker,
    ) -> list[PageResult]:
        total = len(page_images)
        tracker.report(80, f"Recognizing text on {total} pages")

        pages: list[PageResult] = []
        for batch_start in range(0, total, self.recognition_batch_size):
            batch = page_images[batch_start:batch_start + self.recognition_batch_size]
            results = await asyncio.gather(
                *(
                    self.recognizer.recognize(page.data, page.page_number)
                    for page in batch
                )
            )
            pages.extend(results)

            done = batch_start + len(batch)
            tracker.report(80 + done / total * 10, f"Recognized {done} of {total} pages")

            if done < total and self.batch_delay_seconds > 0:
                await asyncio.sleep(self.batch_delay_seconds)

        return pages


def build_document_result(
    pages: list[PageResult],
    processing_time_ms: int,
) -> DocumentResult:
    """
    Собирает результат документа из результатов страниц.

    Страницы приходят в произвольном порядке и сортируются по номеру.

    Args:
        pages: результаты страниц
        processing_time_ms: время обработки документа

    Returns:
        DocumentResult: результат документа

    Raises:
        NoPagesError: если страниц нет (среднее по пустому набору не считается)
    """
    if not pages:
        raise NoPagesError("No pages could be processed from the PDF")

    sorted_pages = sorted(pages, key=lambda p: p.page_number)
    full_text = PAGE_BREAK.join(page.extracted_text for page in sorted_pages)
    average_confidence = sum(p.confidence_score for p in sorted_pages) / len(sorted_pages)

    return DocumentResult(
        id=_new_result_id(),
        pages=sorted_pages,
        full_text=full_text,
        metadata=DocumentMetadata(
            total_pages=len(sorted_pages),
            processing_time_ms=processing_time_ms,
            average_confidence=average_confidence,
        ),
    )


def _new_result_id() -> str:
    return f"ocr_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

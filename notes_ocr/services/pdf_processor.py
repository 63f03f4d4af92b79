"""
Рендеринг страниц PDF в изображения.

Использует pdf2image (pdfinfo/pdftoppm из poppler).

Количество страниц берётся из метаданных документа (pdfinfo). Если
метаданные недоступны — страницы перебираются по одной с низким DPI,
пока рендерер не вернёт сигнал "страницы нет" (PageNotFoundError).
Любая другая ошибка при переборе — ошибка документа, а не конец документа.
"""

import logging
from typing import Optional, Protocol

from pdf2image import convert_from_bytes, pdfinfo_from_bytes
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFSyntaxError,
)
from PIL import Image

from notes_ocr.config import settings
from notes_ocr.exceptions import PageNotFoundError, RasterizationError

logger = logging.getLogger(__name__)


class Rasterizer(Protocol):
    """Граница рендерера PDF, которую использует оркестратор."""

    def count_pages(self, pdf_bytes: bytes) -> Optional[int]: ...

    def render_page(
        self,
        pdf_bytes: bytes,
        page_number: int,
        dpi: Optional[int] = None,
    ) -> Image.Image: ...


class PdfRasterizer:
    """Рендерер на основе pdf2image."""

    def __init__(
        self,
        dpi: Optional[int] = None,
        fmt: Optional[str] = None,
    ) -> None:
        self.dpi = dpi or settings.render_dpi
        self.fmt = fmt or settings.render_format

    def count_pages(self, pdf_bytes: bytes) -> Optional[int]:
        """
        Получает количество страниц из метаданных PDF без рендеринга.

        Args:
            pdf_bytes: содержимое PDF файла

        Returns:
            Optional[int]: количество страниц или None, если pdfinfo
                не смог прочитать метаданные

        Raises:
            RasterizationError: если poppler не установлен
        """
        try:
            info = pdfinfo_from_bytes(pdf_bytes)
        except PDFInfoNotInstalledError as e:
            raise RasterizationError(f"Poppler is not installed: {e}") from e
        except (PDFPageCountError, PDFSyntaxError) as e:
            logger.warning(f"Метаданные PDF недоступны: {e}")
            return None

        pages = info.get("Pages")
        if not isinstance(pages, int):
            logger.warning(f"pdfinfo не вернул количество страниц: {info}")
            return None
        return pages

    def render_page(
        self,
        pdf_bytes: bytes,
        page_number: int,
        dpi: Optional[int] = None,
    ) -> Image.Image:
        """
        Рендерит одну страницу PDF.

        pdf2image обрезает диапазон first_page..last_page по реальному
        количеству страниц, поэтому пустой список означает, что страницы
        с таким номером нет.

        Args:
            pdf_bytes: содержимое PDF файла
            page_number: номер страницы (начинается с 1)
            dpi: разрешение рендеринга (по умолчанию из настроек)

        Returns:
            Image.Image: изображение страницы

        Raises:
            PageNotFoundError: страницы с таким номером нет
            RasterizationError: при любых других ошибках рендеринга
        """
        if page_number < 1:
            raise PageNotFoundError(page_number)

        try:
            images = convert_from_bytes(
                pdf_bytes,
                dpi=dpi or self.dpi,
                fmt=self.fmt,
                first_page=page_number,
                last_page=page_number,
            )
        except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError) as e:
            raise RasterizationError(
                f"Failed to render page {page_number}: {e}"
            ) from e

        if not images:
            raise PageNotFoundError(page_number)

        return images[0]


def discover_page_count(
    rasterizer: Rasterizer,
    pdf_bytes: bytes,
    max_pages: Optional[int] = None,
) -> int:
    """
    Определяет количество страниц документа.

    Сначала метаданные, затем перебор страниц с низким DPI.
    Результат ограничен сверху max_pages.

    Args:
        rasterizer: рендерер PDF
        pdf_bytes: содержимое PDF файла
        max_pages: верхняя граница (по умолчанию из настроек)

    Returns:
        int: количество страниц (0, если первой страницы нет)

    Raises:
        RasterizationError: если страница не отрендерилась по причине,
            отличной от её отсутствия
    """
    limit = max_pages or settings.max_pages

    total = rasterizer.count_pages(pdf_bytes)
    if total is not None:
        if total > limit:
            logger.warning(
                f"Документ содержит {total} страниц, обрабатываем первые {limit}"
            )
        return min(total, limit)

    logger.info(f"Подсчёт страниц перебором (не больше {limit})")
    total = 0
    for page_number in range(1, limit + 1):
        try:
            rasterizer.render_page(pdf_bytes, page_number, dpi=settings.probe_dpi)
        except PageNotFoundError:
            break
        total = page_number

    logger.info(f"Найдено страниц перебором: {total}")
    return total

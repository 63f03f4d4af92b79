"""
Нормализация изображения страницы перед распознаванием.

Выполняет:
    1. Resize: вписываем в 2000x2600 без увеличения
    2. Autocontrast (улучшает читаемость рукописного текста)
    3. Sharpen (чётче штрихи)
    4. JPEG quality 95
"""

import io
import logging
from typing import Optional

from PIL import Image, ImageFilter, ImageOps

from notes_ocr.config import settings

logger = logging.getLogger(__name__)


def normalize_image(
    image: Image.Image,
    max_size: Optional[tuple[int, int]] = None,
    quality: Optional[int] = None,
) -> bytes:
    """
    Готовит изображение страницы к отправке в API распознавания.

    Если обработка не удалась — возвращает исходное изображение
    в JPEG без изменений.

    Args:
        image: изображение страницы
        max_size: (ширина, высота), в которые вписывается изображение
        quality: качество JPEG

    Returns:
        bytes: JPEG изображение
    """
    max_size = max_size or (settings.image_max_width, settings.image_max_height)
    quality = quality or settings.jpeg_quality

    try:
        # Работаем с копией, чтобы не изменить оригинал
        work_img = image.convert("RGB")

        # thumbnail никогда не увеличивает изображение
        work_img.thumbnail(max_size)

        work_img = ImageOps.autocontrast(work_img)
        work_img = work_img.filter(ImageFilter.SHARPEN)

        return _encode_jpeg(work_img, quality)
    except (OSError, ValueError) as e:
        logger.warning(f"Нормализация изображения не удалась, используем оригинал: {e}")
        return _encode_jpeg(image.convert("RGB"), quality)


def _encode_jpeg(image: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()

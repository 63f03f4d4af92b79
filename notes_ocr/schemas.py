"""
Схемы данных сервиса распознавания конспектов.

Включает:
    - Внутренние dataclass'ы для пайплайна обработки
    - Pydantic модели результата (страница, документ, метаданные)
    - События прогресса для потока text/event-stream

Pydantic модели сериализуются в camelCase (формат, который ждёт фронтенд),
в Python используются snake_case имена полей.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# Внутренние структуры пайплайна
# =============================================================================


@dataclass
class PageImage:
    """
    Отрендеренная и нормализованная страница документа.

    Attributes:
        page_number: номер страницы (начинается с 1)
        data: JPEG изображение страницы в байтах
    """

    page_number: int
    data: bytes


class ProcessingStage(str, Enum):
    """
    Этапы обработки документа.

    Переходы только вперёд: uploading -> rasterizing -> recognizing ->
    finalizing -> complete. В failed можно перейти из любого
    незавершённого этапа.
    """

    UPLOADING = "uploading"
    RASTERIZING = "rasterizing"
    RECOGNIZING = "recognizing"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


# =============================================================================
# Pydantic модели результата
# =============================================================================


class CamelModel(BaseModel):
    """Базовая модель с camelCase алиасами для JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class PageResult(CamelModel):
    """
    Результат распознавания одной страницы.

    Attributes:
        page_number: номер страницы (начинается с 1)
        extracted_text: распознанный текст (или текст-заглушка при ошибке)
        confidence_score: эвристическая уверенность (0-1)
    """

    page_number: int = Field(ge=1)
    extracted_text: str
    confidence_score: float = Field(ge=0.0, le=1.0)


class DocumentMetadata(CamelModel):
    """
    Сводная информация по документу.

    Attributes:
        total_pages: количество страниц в результате
        processing_time_ms: время обработки документа в мс
        average_confidence: средняя уверенность по всем страницам
    """

    total_pages: int
    processing_time_ms: int
    average_confidence: float


class DocumentResult(CamelModel):
    """
    Результат обработки всего документа.

    Attributes:
        id: идентификатор обработки (ocr_<ms>_<hex>)
        pages: результаты по страницам, отсортированы по номеру страницы
        full_text: текст всех страниц через разделитель страниц
        metadata: сводная информация
    """

    id: str
    pages: list[PageResult]
    full_text: str
    metadata: DocumentMetadata


# =============================================================================
# События потока прогресса
# =============================================================================


class ProgressUpdate(CamelModel):
    """Промежуточный прогресс: процент (0-100) и описание текущего шага."""

    type: Literal["progress"] = "progress"
    progress: int = Field(ge=0, le=100)
    step: str


class CompleteEvent(CamelModel):
    """Терминальное событие: обработка завершена, прогресс 100%."""

    type: Literal["complete"] = "complete"
    progress: Literal[100] = 100
    result: DocumentResult


class ErrorEvent(CamelModel):
    """Терминальное событие: обработка прервана ошибкой."""

    type: Literal["error"] = "error"
    message: str


ProgressEvent = Annotated[
    Union[ProgressUpdate, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]

TERMINAL_EVENT_TYPES = frozenset({"complete", "error"})

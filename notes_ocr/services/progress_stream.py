"""
Поток событий прогресса (text/event-stream).

Один поток на один запрос: обработка документа запускается фоновой
задачей, события складываются в asyncio.Queue, генератор отдаёт их
клиенту кадрами вида:

    data: {"type":"progress","progress":30,"step":"..."}\n\n

Поток всегда заканчивается ровно одним терминальным событием
(complete или error), после него событий нет.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable

from notes_ocr.schemas import (
    TERMINAL_EVENT_TYPES,
    CompleteEvent,
    DocumentResult,
    ErrorEvent,
    ProgressEvent,
)
from notes_ocr.services.document_processor import ProgressCallback

logger = logging.getLogger(__name__)

DocumentJob = Callable[[ProgressCallback], Awaitable[DocumentResult]]

# Фоновые задачи держим по ссылке, иначе их может собрать GC
_background_tasks: set[asyncio.Task] = set()


def format_sse(event: ProgressEvent) -> str:
    """
    Кадр server-sent events для одного события.

    Args:
        event: событие прогресса

    Returns:
        str: строка "data: <json>" с завершающей пустой строкой
    """
    return f"data: {event.model_dump_json(by_alias=True)}\n\n"


async def stream_progress(job: DocumentJob) -> AsyncIterator[str]:
    """
    Запускает обработку документа и отдаёт события в формате SSE.

    Все исключения задачи перехватываются здесь и превращаются
    в единственное событие error. Отключение клиента обработку
    не отменяет: задача доработает до конца.

    Args:
        job: корутина обработки, принимающая callback прогресса

    Yields:
        str: кадры SSE
    """
    queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()

    async def run() -> None:
        try:
            result = await job(queue.put_nowait)
        except Exception as e:
            logger.exception(f"Ошибка обработки документа: {e}")
            queue.put_nowait(ErrorEvent(message=str(e) or type(e).__name__))
        else:
            queue.put_nowait(CompleteEvent(result=result))

    task = asyncio.create_task(run())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    while True:
        event = await queue.get()
        yield format_sse(event)
        if event.type in TERMINAL_EVENT_TYPES:
            break

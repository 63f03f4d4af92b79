"""
Сервис распознавания рукописных конспектов — FastAPI приложение.

Принимает PDF, рендерит страницы в изображения, отправляет каждую
страницу во внешний API распознавания и стримит прогресс клиенту
через text/event-stream.

Эндпоинты:
    POST    /ocr    — загрузка PDF, поток событий прогресса и результат
    OPTIONS /ocr    — CORS preflight
    GET     /health — состояние сервиса и конфигурация
                      (check_api=true — проверка API распознавания)

Запуск:
    uvicorn notes_ocr.main:app --host 0.0.0.0 --port 8000
"""

import json
import logging
from typing import Callable, Union

from fastapi import Depends, FastAPI, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response, StreamingResponse

from notes_ocr import __version__
from notes_ocr.config import settings
from notes_ocr.services.document_processor import DocumentProcessor, ProgressCallback
from notes_ocr.services.pdf_processor import PdfRasterizer, Rasterizer
from notes_ocr.services.progress_stream import stream_progress
from notes_ocr.services.recognition_client import RecognitionClient

# Настройка логгера
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [Notes-OCR] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

RecognizerFactory = Callable[[], RecognitionClient]


class UnicodeJSONResponse(JSONResponse):
    """JSON ответ без \\uXXXX экранирования не-ASCII символов."""

    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


# FastAPI приложение
app = FastAPI(
    title="Handwritten Notes OCR",
    description="Распознавание рукописных конспектов из PDF через мультимодальный API",
    version=__version__,
    default_response_class=UnicodeJSONResponse,
)


def get_rasterizer() -> Rasterizer:
    return PdfRasterizer()


def get_recognizer_factory() -> RecognizerFactory:
    # Клиент создаётся внутри фоновой задачи и живёт до конца обработки
    return RecognitionClient


@app.get("/health")
async def health_check(
    check_api: bool = False,
    recognizer_factory: RecognizerFactory = Depends(get_recognizer_factory),
) -> dict:
    """
    Проверка работоспособности сервиса.

    Args:
        check_api: выполнить пробный запрос к API распознавания

    Returns:
        dict: статус сервиса, доступность API и текущая конфигурация
    """
    api_status = "not_checked"
    if check_api:
        async with recognizer_factory() as client:
            api_status = "ok" if await client.test_connection() else "unavailable"

    return {
        "status": "ok" if api_status != "unavailable" else "degraded",
        "service": "notes-ocr",
        "version": __version__,
        "recognition_api": {
            "url": settings.api_url,
            "model": settings.api_model,
            "status": api_status,
        },
        "config": {
            "max_file_size_mb": settings.max_file_size_mb,
            "render_dpi": settings.render_dpi,
            "max_pages": settings.max_pages,
            "raster_batch_size": settings.raster_batch_size,
            "recognition_batch_size": settings.recognition_batch_size,
            "recognition_batch_delay_seconds": settings.recognition_batch_delay_seconds,
        },
    }


@app.options("/ocr")
async def ocr_preflight() -> Response:
    """CORS preflight для POST /ocr."""
    return Response(status_code=200, headers=CORS_HEADERS)


@app.post("/ocr")
async def execute_ocr(
    request: Request,
    rasterizer: Rasterizer = Depends(get_rasterizer),
    recognizer_factory: RecognizerFactory = Depends(get_recognizer_factory),
) -> StreamingResponse:
    """
    Распознаёт текст рукописного PDF и стримит прогресс.

    Ошибки проверки файла возвращаются сразу ответом 400. После открытия
    потока все ошибки приходят событием error.

    Args:
        request: multipart/form-data запрос, PDF в поле "pdf"

    Returns:
        StreamingResponse: text/event-stream с событиями progress,
            затем complete или error

    Raises:
        HTTPException: 400 при ошибках проверки файла
    """
    form = await request.form()
    try:
        pdf = form.get("pdf")
        pdf_bytes = await _validate_and_read_file(pdf)
    finally:
        await form.close()
    logger.info(f"Получен файл: {pdf.filename}, {len(pdf_bytes)} байт")

    async def job(on_progress: ProgressCallback):
        async with recognizer_factory() as recognizer:
            processor = DocumentProcessor(rasterizer, recognizer)
            return await processor.process(pdf_bytes, on_progress)

    return StreamingResponse(
        stream_progress(job),
        media_type="text/event-stream",
        headers={**CORS_HEADERS, "Cache-Control": "no-cache"},
    )


async def _validate_and_read_file(file: Union[UploadFile, str, None]) -> bytes:
    """
    Валидирует и читает загруженный файл.

    Проверяет:
        - Наличие файла
        - Что поле содержит файл, а не текстовое значение
        - Тип файла (application/pdf)
        - Размер файла (не больше max_file_size_mb)
        - PDF сигнатуру (%PDF-)
        - Минимальный размер (если задан min_file_size_bytes)

    Args:
        file: значение поля "pdf" из формы

    Returns:
        bytes: содержимое файла

    Raises:
        HTTPException: 400 при ошибках валидации
    """
    if file is None:
        raise _validation_error("missing_file", "No PDF file provided")

    if isinstance(file, str) or file.content_type != "application/pdf":
        raise _validation_error("invalid_file_type", "Only PDF files are supported")

    # Размер из заголовков multipart: отказываем, не читая файл
    max_size = settings.max_file_size_mb * 1024 * 1024
    size_message = f"File size exceeds {settings.max_file_size_mb}MB limit"
    if file.size is not None and file.size > max_size:
        raise _validation_error("file_too_large", size_message)

    file_bytes = await file.read()

    if len(file_bytes) > max_size:
        raise _validation_error("file_too_large", size_message)

    if not file_bytes.startswith(PDF_MAGIC):
        raise _validation_error("invalid_pdf", "Invalid PDF format")

    if len(file_bytes) < settings.min_file_size_bytes:
        raise _validation_error("file_too_small", "PDF file too small")

    return file_bytes


def _validation_error(error: str, message: str) -> HTTPException:
    logger.warning(f"Файл отклонён: {message}")
    return HTTPException(
        status_code=400,
        detail={"error": error, "message": message},
        headers=CORS_HEADERS,
    )


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Запуск Notes OCR на {settings.host}:{settings.port}")
    logger.info(f"API распознавания: {settings.api_url} ({settings.api_model})")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
    )

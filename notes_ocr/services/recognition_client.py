"""
Клиент внешнего API распознавания рукописного текста.

Отправляет изображение страницы в OpenAI-совместимый эндпоинт
chat/completions (мультимодальная модель) и превращает ответ
в PageResult с эвристической уверенностью.

Ошибки запроса не пробрасываются: страница получает текст-заглушку
"[Error processing page N: ...]" и уверенность 0, обработка документа
продолжается.
"""

import base64
import logging
from typing import Optional

import httpx

from notes_ocr.config import settings
from notes_ocr.exceptions import RecognitionError
from notes_ocr.schemas import PageResult
from notes_ocr.services.confidence import calculate_confidence

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert OCR system specialized in extracting text from handwritten documents. Your task is to:

1. Carefully analyze the handwritten text in the provided image
2. Extract ALL visible text with high accuracy
3. Maintain the original structure and formatting as much as possible
4. Preserve line breaks, paragraphs, and spacing
5. Handle various handwriting styles, sizes, and qualities
6. Return ONLY the extracted text without any additional commentary

Guidelines:
- Extract text exactly as written, including any crossed-out or corrected text
- Preserve the reading order (top to bottom, left to right)
- Maintain paragraph breaks and line spacing
- If text is unclear, make your best educated guess based on context
- Do not add punctuation that isn't clearly present
- Do not correct spelling or grammar errors in the original text
- If you encounter non-text elements (drawings, diagrams), describe them briefly in [brackets]

Return the extracted text in a clean, readable format."""

USER_PROMPT_TEMPLATE = (
    "Extract all text from this handwritten page (Page {page_number}). "
    "Focus on accuracy and maintaining the original structure."
)


class RecognitionClient:
    """
    Асинхронный клиент API распознавания.

    Владеет одним httpx.AsyncClient на время обработки документа.
    Используется как async context manager.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_url = api_url or settings.api_url
        self.model = model or settings.api_model

        api_key = api_key if api_key is not None else settings.api_key
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        if settings.api_customer_id:
            headers["customerId"] = settings.api_customer_id

        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds or settings.api_timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> "RecognitionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def recognize(self, image_bytes: bytes, page_number: int) -> PageResult:
        """
        Распознаёт текст на одной странице.

        Один запрос на страницу, без повторов.

        Args:
            image_bytes: JPEG изображение страницы
            page_number: номер страницы (начинается с 1)

        Returns:
            PageResult: текст и уверенность; при ошибке — текст-заглушка
                и уверенность 0
        """
        image_base64 = base64.b64encode(image_bytes).decode("ascii")
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "text",
                            "text": USER_PROMPT_TEMPLATE.format(page_number=page_number),
                        },
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:image/jpeg;base64,{image_base64}",
                            },
                        },
                    ],
                },
            ],
            "max_tokens": settings.api_max_tokens,
            "temperature": settings.api_temperature,
        }

        try:
            data = await self._post(payload)
            content = _extract_content(data)
        except Exception as e:
            reason = str(e) or type(e).__name__
            logger.warning(f"Ошибка распознавания страницы {page_number}: {reason}")
            return PageResult(
                page_number=page_number,
                extracted_text=f"[Error processing page {page_number}: {reason}]",
                confidence_score=0.0,
            )

        # Уверенность считается по ответу как есть, в результат идёт текст без краевых пробелов
        confidence = calculate_confidence(content)
        return PageResult(
            page_number=page_number,
            extracted_text=content.strip(),
            confidence_score=confidence,
        )

    async def test_connection(self) -> bool:
        """
        Проверяет доступность API распознавания коротким запросом.

        Returns:
            bool: True, если API ответил успешно
        """
        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": 'Test connection - please respond with "Connection successful"',
                },
            ],
            "max_tokens": 10,
        }
        try:
            await self._post(payload)
        except Exception as e:
            logger.warning(f"API распознавания недоступен: {e}")
            return False
        return True

    async def _post(self, payload: dict) -> dict:
        response = await self._client.post(self.api_url, json=payload)

        if not response.is_success:
            raise RecognitionError(
                f"OCR API request failed: {response.status_code} {response.reason_phrase}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise RecognitionError(f"OCR API returned invalid JSON: {e}") from e


def _extract_content(data: dict) -> str:
    """
    Достаёт текст из ответа chat/completions.

    Отсутствующий текст считается пустой строкой, а ответ не той
    структуры (не объект, choices не список) — ошибкой протокола.
    """
    if not isinstance(data, dict):
        raise RecognitionError("OCR API returned malformed response")

    choices = data.get("choices") or []
    if not isinstance(choices, list):
        raise RecognitionError("OCR API returned malformed choices")
    if not choices:
        return ""

    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if content is None:
        return ""
    if not isinstance(content, str):
        raise RecognitionError("OCR API returned non-text content")
    return content

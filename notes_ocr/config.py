"""
Конфигурация сервиса распознавания рукописных конспектов.

Все значения читаются из .env файла (или переменных окружения).
Единый префикс: OCR_

Документация по параметрам: .env.example
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Настройки сервиса.

    Читает переменные с префиксом OCR_ из .env файла.
    Объединяет все параметры: сервер, лимиты API, рендеринг PDF,
    нормализацию изображений, пакетную обработку и внешний API распознавания.
    """

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Сервер ---
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    # --- API: лимиты загрузки ---
    max_file_size_mb: int = 50
    # 0 — проверка минимального размера отключена
    min_file_size_bytes: int = 0

    # --- Split: PDF -> images ---
    render_dpi: int = 200
    render_format: str = "jpeg"
    # DPI для пробного рендеринга при подсчёте страниц перебором
    probe_dpi: int = 10
    # Верхняя граница количества страниц документа
    max_pages: int = 500

    # --- Нормализация изображений ---
    image_max_width: int = 2000
    image_max_height: int = 2600
    jpeg_quality: int = 95

    # --- Пакетная обработка ---
    raster_batch_size: int = 5
    recognition_batch_size: int = 3
    # Пауза между пакетами запросов к API распознавания (rate limit)
    recognition_batch_delay_seconds: float = 1.0

    # --- Внешний API распознавания (OpenAI-совместимый chat/completions) ---
    api_url: str = "https://api.openai.com/v1/chat/completions"
    api_key: str = ""
    api_customer_id: Optional[str] = None
    api_model: str = "gpt-4o"
    api_max_tokens: int = 4000
    api_temperature: float = 0.1
    api_timeout_seconds: float = 120.0


# Глобальный экземпляр настроек
settings = Settings()

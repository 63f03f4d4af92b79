"""
Исключения пайплайна обработки документа.
"""


class NotesOCRError(Exception):
    """Базовое исключение сервиса."""


class RasterizationError(NotesOCRError):
    """Ошибка рендеринга PDF (повреждённый файл, отсутствует poppler и т.д.)."""


class PageNotFoundError(NotesOCRError):
    """
    Запрошенной страницы нет в документе.

    Отдельный сигнал, чтобы при подсчёте страниц перебором конец документа
    не путался с ошибкой рендеринга.
    """

    def __init__(self, page_number: int) -> None:
        super().__init__(f"Page {page_number} does not exist")
        self.page_number = page_number


class NoPagesError(NotesOCRError):
    """Из документа не удалось получить ни одной страницы."""


class RecognitionError(NotesOCRError):
    """Ошибка запроса к API распознавания."""

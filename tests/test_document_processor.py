import asyncio

import pytest

from notes_ocr.exceptions import NoPagesError, RasterizationError
from notes_ocr.schemas import PageResult, ProcessingStage, ProgressUpdate
from notes_ocr.services import document_processor
from notes_ocr.services.document_processor import (
    PAGE_BREAK,
    DocumentProcessor,
    ProgressTracker,
    build_document_result,
)

PDF = b"%PDF-1.4 fake"


class FakeRecognizer:
    """Recognizer whose later pages finish first within a batch."""

    def __init__(self, failing_pages: tuple[int, ...] = (), delay: float = 0.01) -> None:
        self.failing_pages = set(failing_pages)
        self.delay = delay
        self.completed: list[int] = []
        self.active = 0
        self.max_concurrent = 0

    async def recognize(self, image_bytes: bytes, page_number: int) -> PageResult:
        assert image_bytes[:2] == b"\xff\xd8"
        self.active += 1
        self.max_concurrent = max(self.max_concurrent, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay / page_number)
        finally:
            self.active -= 1
        self.completed.append(page_number)

        if page_number in self.failing_pages:
            return PageResult(
                page_number=page_number,
                extracted_text=f"[Error processing page {page_number}: boom]",
                confidence_score=0.0,
            )
        return PageResult(
            page_number=page_number,
            extracted_text=f"Text of page {page_number}",
            confidence_score=0.5 + page_number / 100,
        )


def _process(processor: DocumentProcessor) -> tuple:
    events: list[ProgressUpdate] = []
    result = asyncio.run(processor.process(PDF, events.append))
    return result, events


class TestDocumentProcessor:
    def test_three_pages(self, make_rasterizer) -> None:
        recognizer = FakeRecognizer()
        processor = DocumentProcessor(make_rasterizer(3), recognizer, batch_delay_seconds=0)

        result, _ = _process(processor)

        assert len(result.pages) == 3
        assert result.metadata.total_pages == 3
        assert result.full_text.count("--- Page Break ---") == 2
        assert result.full_text == PAGE_BREAK.join(
            ["Text of page 1", "Text of page 2", "Text of page 3"]
        )
        assert result.id.startswith("ocr_")

    def test_pages_sorted_regardless_of_completion_order(self, make_rasterizer) -> None:
        recognizer = FakeRecognizer()
        processor = DocumentProcessor(
            make_rasterizer(6), recognizer, recognition_batch_size=3, batch_delay_seconds=0
        )

        result, _ = _process(processor)

        # внутри пакета страницы с большим номером завершаются раньше
        assert recognizer.completed[:3] == [3, 2, 1]
        assert [p.page_number for p in result.pages] == [1, 2, 3, 4, 5, 6]

    def test_average_confidence_is_mean(self, make_rasterizer) -> None:
        processor = DocumentProcessor(make_rasterizer(4), FakeRecognizer(), batch_delay_seconds=0)

        result, _ = _process(processor)

        scores = [p.confidence_score for p in result.pages]
        assert result.metadata.average_confidence == pytest.approx(sum(scores) / len(scores))

    def test_failed_recognition_keeps_page(self, make_rasterizer) -> None:
        processor = DocumentProcessor(
            make_rasterizer(3), FakeRecognizer(failing_pages=(2,)), batch_delay_seconds=0
        )

        result, _ = _process(processor)

        assert result.metadata.total_pages == 3
        failed = result.pages[1]
        assert failed.confidence_score == 0
        assert "[Error processing page" in failed.extracted_text

    def test_unrenderable_page_is_dropped(self, make_rasterizer) -> None:
        processor = DocumentProcessor(
            make_rasterizer(3, failing_pages=(2,)), FakeRecognizer(), batch_delay_seconds=0
        )

        result, _ = _process(processor)

        assert [p.page_number for p in result.pages] == [1, 3]
        assert result.metadata.total_pages == 2

    def test_zero_pages_is_an_error(self, make_rasterizer) -> None:
        recognizer = FakeRecognizer()
        processor = DocumentProcessor(make_rasterizer(0), recognizer, batch_delay_seconds=0)

        with pytest.raises(NoPagesError, match="No pages"):
            _process(processor)
        assert recognizer.completed == []

    def test_all_pages_unrenderable_is_an_error(self, make_rasterizer) -> None:
        processor = DocumentProcessor(
            make_rasterizer(2, failing_pages=(1, 2)), FakeRecognizer(), batch_delay_seconds=0
        )

        with pytest.raises(NoPagesError):
            _process(processor)

    def test_rasterizer_failure_propagates(self, make_rasterizer) -> None:
        processor = DocumentProcessor(
            make_rasterizer(3, metadata=False, failing_pages=(1,)),
            FakeRecognizer(),
            batch_delay_seconds=0,
        )

        with pytest.raises(RasterizationError):
            _process(processor)

    def test_page_count_bounded_by_max_pages(self, make_rasterizer) -> None:
        processor = DocumentProcessor(
            make_rasterizer(10), FakeRecognizer(delay=0), max_pages=4, batch_delay_seconds=0
        )

        result, _ = _process(processor)

        assert result.metadata.total_pages == 4


class TestBatching:
    def test_raster_batches_bound_concurrency(self, make_rasterizer) -> None:
        rasterizer = make_rasterizer(7)
        processor = DocumentProcessor(
            rasterizer, FakeRecognizer(delay=0), raster_batch_size=2, batch_delay_seconds=0
        )

        _process(processor)

        assert rasterizer.max_concurrent <= 2
        assert sorted(rasterizer.render_calls) == list(range(1, 8))

    def test_recognition_batches_bound_concurrency(self, make_rasterizer) -> None:
        recognizer = FakeRecognizer()
        processor = DocumentProcessor(
            make_rasterizer(7), recognizer, recognition_batch_size=2, batch_delay_seconds=0
        )

        _process(processor)

        assert recognizer.max_concurrent == 2

    def test_delay_between_recognition_batches_only(
        self, make_rasterizer, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        real_sleep = asyncio.sleep
        delays: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            delays.append(seconds)
            await real_sleep(0)

        monkeypatch.setattr(document_processor.asyncio, "sleep", fake_sleep)
        processor = DocumentProcessor(
            make_rasterizer(5),
            FakeRecognizer(delay=0),
            recognition_batch_size=2,
            batch_delay_seconds=0.5,
        )

        _process(processor)

        # 3 пакета -> 2 паузы, после последнего паузы нет
        assert [d for d in delays if d > 0] == [0.5, 0.5]


class TestProgress:
    def test_progress_is_monotonic_and_below_100(self, make_rasterizer) -> None:
        processor = DocumentProcessor(make_rasterizer(9), FakeRecognizer(), batch_delay_seconds=0)

        _, events = _process(processor)

        percents = [event.progress for event in events]
        assert percents[0] == 0
        assert percents == sorted(percents)
        assert max(percents) < 100
        assert percents[-1] >= 90

    def test_progress_ranges(self, make_rasterizer) -> None:
        processor = DocumentProcessor(make_rasterizer(4), FakeRecognizer(), batch_delay_seconds=0)

        _, events = _process(processor)

        steps = {event.step: event.progress for event in events}
        assert steps["Analyzing PDF structure"] == 10
        assert steps["Converting 4 pages"] == 30
        assert steps["Processed 4 of 4 pages"] == 80
        assert steps["Recognized 4 of 4 pages"] == 90
        assert steps["Finalizing text extraction"] == 90


class TestProgressTracker:
    def test_stages_move_forward(self) -> None:
        tracker = ProgressTracker()
        tracker.advance(ProcessingStage.RASTERIZING)
        tracker.advance(ProcessingStage.RECOGNIZING)

        with pytest.raises(ValueError):
            tracker.advance(ProcessingStage.RASTERIZING)

    def test_failed_reachable_from_any_stage(self) -> None:
        for stage in (ProcessingStage.UPLOADING, ProcessingStage.FINALIZING):
            tracker = ProgressTracker()
            tracker.stage = stage
            tracker.advance(ProcessingStage.FAILED)
            assert tracker.stage is ProcessingStage.FAILED

    def test_no_transitions_after_terminal_stage(self) -> None:
        tracker = ProgressTracker()
        tracker.advance(ProcessingStage.FAILED)

        with pytest.raises(ValueError):
            tracker.advance(ProcessingStage.FAILED)

    def test_report_never_decreases_and_caps_at_99(self) -> None:
        events: list[ProgressUpdate] = []
        tracker = ProgressTracker(events.append)

        tracker.report(40, "a")
        tracker.report(20, "b")
        tracker.report(150, "c")

        assert [e.progress for e in events] == [40, 40, 99]


class TestBuildDocumentResult:
    def test_empty_pages_rejected(self) -> None:
        with pytest.raises(NoPagesError):
            build_document_result([], 10)

    def test_sorts_and_joins(self) -> None:
        pages = [
            PageResult(page_number=2, extracted_text="two", confidence_score=0.4),
            PageResult(page_number=1, extracted_text="one", confidence_score=0.8),
        ]

        result = build_document_result(pages, 1234)

        assert [p.page_number for p in result.pages] == [1, 2]
        assert result.full_text == "one\n\n--- Page Break ---\n\ntwo"
        assert result.metadata.processing_time_ms == 1234
        assert result.metadata.average_confidence == pytest.approx(0.6)

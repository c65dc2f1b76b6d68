"""Tests for URL discovery, title detection and the extraction stage."""

from unittest.mock import patch

import pytest

from jobmail.config.models import ExtractionConfig
from jobmail.domain.models import SourceMessage
from jobmail.extraction import (
    ExtractionError,
    ExtractionStage,
    assign_titles,
    deduplicate_urls,
    extract_all_urls,
    filter_job_urls,
    find_titled_urls,
    title_from_subject,
    truncate_title,
)
from jobmail.extraction.urls import compile_patterns
from jobmail.persistence import (
    PersistenceError,
    PostingRepository,
    SourceMessageRepository,
    get_session,
)
from jobmail.pipeline import TaskQueue
from tests.helpers import make_config


class TestExtractAllUrls:
    """Tests for extract_all_urls."""

    def test_urls_in_order(self):
        text = "See https://example.com/jobs/42. Also (https://example.org/a)"
        assert extract_all_urls(text) == ["https://example.com/jobs/42", "https://example.org/a"]

    def test_html_entities_decoded(self):
        assert extract_all_urls("https://example.com/jobs?id=1&amp;x=2") == ["https://example.com/jobs?id=1&x=2"]

    def test_empty_text(self):
        assert extract_all_urls("") == []
        assert extract_all_urls("no links here") == []


class TestFilterJobUrls:
    """Tests for filter_job_urls."""

    def test_known_boards(self):
        urls = [
            "https://www.linkedin.com/jobs/view/123456",
            "https://example.com/unsubscribe",
            "https://example.com/careers/9",
        ]
        assert filter_job_urls(urls) == [
            "https://www.linkedin.com/jobs/view/123456",
            "https://example.com/careers/9",
        ]

    def test_path_keyword_fallback(self):
        urls = ["https://example.com/position/5", "https://example.com/about"]
        assert filter_job_urls(urls) == ["https://example.com/position/5"]

    def test_nothing_job_like(self):
        assert filter_job_urls(["https://example.com/newsletter"]) == []

    def test_extra_patterns(self):
        patterns = compile_patterns([r"https://ats\.example\.org/p/\d+"])
        urls = ["https://ats.example.org/p/77", "https://example.com/about"]
        assert filter_job_urls(urls, patterns) == ["https://ats.example.org/p/77"]


class TestDeduplicateUrls:
    """Tests for deduplicate_urls."""

    def test_tracking_variants_collapse_to_first(self):
        urls = [
            "https://example.com/jobs/42?utm_source=mail",
            "https://example.com/jobs/42?utm_campaign=weekly",
            "https://example.com/jobs/43",
        ]
        assert deduplicate_urls(urls) == [
            "https://example.com/jobs/42?utm_source=mail",
            "https://example.com/jobs/43",
        ]

    def test_distinct_queries_kept(self):
        urls = ["https://example.com/jobs?id=1", "https://example.com/jobs?id=2"]
        assert deduplicate_urls(urls) == urls


class TestTitles:
    """Tests for title detection."""

    def test_inline_title(self):
        body = "Senior Engineer - https://example.com/jobs/42"
        assert find_titled_urls(body) == [("Senior Engineer", "https://example.com/jobs/42")]

    def test_title_on_previous_line_skips_noise(self):
        body = "Backend Developer (Python)\nEasily apply\n3 days ago\nhttps://example.com/jobs/7\n"
        assert find_titled_urls(body) == [("Backend Developer (Python)", "https://example.com/jobs/7")]

    def test_short_lines_are_not_titles(self):
        body = "Platform Engineer\nApply now\nhttps://example.com/jobs/8"
        assert find_titled_urls(body) == [("Platform Engineer", "https://example.com/jobs/8")]

    def test_non_job_urls_ignored(self):
        assert find_titled_urls("Our newsletter - https://example.com/news") == []

    def test_subject_cleanup(self):
        subject = "Re: [Jobs] New job: Senior Data Engineer - and 5 more jobs in Berlin"
        assert title_from_subject(subject) == "Senior Data Engineer"

    def test_short_subject_uses_body(self):
        assert title_from_subject("Jobs", "Position: Staff Engineer\n") == "Staff Engineer"

    def test_missing_subject(self):
        assert title_from_subject(None) == "Job Opportunity"
        assert title_from_subject("") == "Job Opportunity"

    def test_truncate(self):
        title = truncate_title("x" * 250)
        assert len(title) == 200
        assert title.endswith("...")
        assert truncate_title("short") == "short"

    def test_assign_titles_numbers_shared_fallback(self):
        urls = ["https://example.com/jobs/1", "https://example.com/jobs/2"]
        assert assign_titles("Job alert: Python Developer", "", urls) == [
            ("Python Developer (1)", "https://example.com/jobs/1"),
            ("Python Developer (2)", "https://example.com/jobs/2"),
        ]

    def test_assign_titles_prefers_body_titles(self):
        body = "Senior Engineer - https://example.com/jobs/1\nMore: https://example.com/jobs/2"
        urls = ["https://example.com/jobs/1", "https://example.com/jobs/2"]
        assert assign_titles("Job alert: Python Developer", body, urls) == [
            ("Senior Engineer", "https://example.com/jobs/1"),
            ("Python Developer", "https://example.com/jobs/2"),
        ]


def store_message(external_id="<1@mail>", body="Senior Engineer - https://example.com/jobs/42", subject="Job alert"):
    with get_session() as session:
        stored, _ = SourceMessageRepository(session).save(
            SourceMessage(external_id=external_id, subject=subject, body=body, is_job_related=True)
        )
    return stored.id


@pytest.mark.usefixtures("database")
class TestExtractionStage:
    """Tests for ExtractionStage."""

    @pytest.fixture
    def queue(self):
        return TaskQueue(make_config())

    @pytest.fixture
    def stage(self, queue):
        return ExtractionStage(queue, ExtractionConfig())

    def test_creates_posting_and_enrich_task(self, stage, queue):
        message_id = store_message()

        outcome = stage.extract(message_id)

        assert outcome.created == 1
        assert outcome.enqueued == 1
        with get_session() as session:
            posting = PostingRepository(session).get_by_id(outcome.posting_ids[0])
            message = SourceMessageRepository(session).get_by_id(message_id)
        assert posting.title == "Senior Engineer"
        assert posting.url == "https://example.com/jobs/42"
        assert posting.source_message_id == message_id
        assert message.processed
        assert queue.stats()["enrich"]["waiting"] == 1

    def test_rerun_is_skipped(self, stage, queue):
        message_id = store_message()
        stage.extract(message_id)

        outcome = stage.extract(message_id)

        assert outcome.skipped
        assert outcome.skip_reason == "already_processed"
        assert queue.stats()["enrich"]["waiting"] == 1

    def test_missing_message(self, stage):
        outcome = stage.extract(999)
        assert outcome.skipped
        assert outcome.skip_reason == "missing"

    def test_rediscovered_url_not_enriched_twice(self, stage, queue):
        first = stage.extract(store_message("<1@mail>", "Engineer - https://example.com/jobs/42?utm_source=a"))
        second = stage.extract(store_message("<2@mail>", "Engineer - https://example.com/jobs/42?utm_source=b"))

        assert second.updated == 1
        assert second.created == 0
        assert second.posting_ids == first.posting_ids
        assert queue.stats()["enrich"]["waiting"] == 1

    def test_message_without_urls(self, stage):
        message_id = store_message(body="Thanks for applying!")

        outcome = stage.extract(message_id)

        assert outcome.candidates == 0
        with get_session() as session:
            assert SourceMessageRepository(session).get_by_id(message_id).processed

    def test_all_candidates_failing_raises(self, stage):
        message_id = store_message()

        with patch(
            "jobmail.extraction.stage.PostingRepository.upsert_posting",
            side_effect=PersistenceError("database is locked"),
        ):
            with pytest.raises(ExtractionError):
                stage.extract(message_id)

        with get_session() as session:
            assert not SourceMessageRepository(session).get_by_id(message_id).processed


def failing_for(url_suffix, error):
    """upsert_posting that raises ``error`` for one URL and stores the rest."""
    original = PostingRepository.upsert_posting

    def upsert_posting(self, url, title, **kwargs):
        if url.endswith(url_suffix):
            raise error
        return original(self, url, title, **kwargs)

    return upsert_posting


@pytest.mark.usefixtures("database")
class TestPartialExtraction:
    """One candidate of a message failing while the others are stored."""

    BODY = "Engineer - https://example.com/jobs/1\nDesigner - https://example.com/jobs/2"

    @pytest.fixture
    def queue(self):
        return TaskQueue(make_config())

    @pytest.fixture
    def stage(self, queue):
        return ExtractionStage(queue, ExtractionConfig())

    @pytest.mark.parametrize(
        "error",
        [PersistenceError("database is locked"), ValueError("unexpected url")],
        ids=["persistence", "unexpected"],
    )
    def test_other_candidate_stored_and_enqueued(self, stage, queue, error):
        message_id = store_message(body=self.BODY)

        with patch.object(PostingRepository, "upsert_posting", failing_for("/jobs/1", error)):
            outcome = stage.extract(message_id)

        assert outcome.failed == 1
        assert outcome.created == 1
        assert outcome.enqueued == 1
        with get_session() as session:
            (posting_id,) = outcome.posting_ids
            assert PostingRepository(session).get_by_id(posting_id).url == "https://example.com/jobs/2"
            assert SourceMessageRepository(session).get_by_id(message_id).processed
        assert queue.stats()["enrich"]["waiting"] == 1

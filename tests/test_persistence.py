"""Unit tests for the record store."""

import threading

import pytest

from jobmail.domain.models import (
    Embedding,
    Platform,
    PostingFilters,
    ProcessingState,
    Salary,
    SourceMessage,
)
from jobmail.persistence import (
    DatabaseConnectionError,
    InvalidStateTransition,
    KeywordRepository,
    PlatformRepository,
    PostingRepository,
    RecordNotFoundError,
    SourceMessageRepository,
    close_database,
    get_session,
    init_database,
)
from jobmail.utils.urls import posting_url_key

URL = "https://example.com/jobs/42"


def create_posting(url=URL, title="Senior Engineer", **kwargs):
    with get_session() as session:
        return PostingRepository(session).upsert_posting(url, title, **kwargs)


def get_posting(posting_id):
    with get_session() as session:
        return PostingRepository(session).get_by_id(posting_id)


class TestDatabaseInitialization:
    """Tests for database initialization."""

    def test_init_database_file(self, tmp_path):
        """Test a file database and its parent directories are created."""
        db_file = tmp_path / "nested" / "jobmail.db"

        init_database(f"sqlite:///{db_file}")
        try:
            with get_session() as session:
                assert session is not None
            assert db_file.exists()
        finally:
            close_database()

    def test_empty_url_rejected(self):
        with pytest.raises(DatabaseConnectionError, match="non-empty"):
            init_database("")

    def test_invalid_url_rejected(self):
        with pytest.raises(DatabaseConnectionError):
            init_database("not a url")

    def test_session_requires_init(self):
        close_database()
        with pytest.raises(DatabaseConnectionError, match="not initialized"):
            with get_session():
                pass


@pytest.mark.usefixtures("database")
class TestSessionLifecycle:
    """Tests for commit and rollback behaviour."""

    def test_rollback_on_error(self):
        with pytest.raises(RuntimeError):
            with get_session() as session:
                PostingRepository(session).upsert_posting(URL, "Senior Engineer")
                raise RuntimeError("abort")

        with get_session() as session:
            assert PostingRepository(session).get_by_url(URL) is None


@pytest.mark.usefixtures("database")
class TestPostingUpsert:
    """Tests for inserting and merging postings."""

    def test_insert_new(self):
        posting_id, is_new = create_posting()

        posting = get_posting(posting_id)
        assert is_new
        assert posting.title == "Senior Engineer"
        assert posting.url == URL
        assert posting.url_key == posting_url_key(URL)
        assert posting.processing_state == ProcessingState.PENDING
        assert posting.created_at == posting.last_seen_at

    def test_same_url_merges(self):
        first_id, _ = create_posting(title="Engineer")
        second_id, is_new = create_posting(title="Senior Engineer")

        assert second_id == first_id
        assert not is_new
        assert get_posting(first_id).title == "Senior Engineer"

    def test_tracking_variants_merge(self):
        first_id, _ = create_posting(url=URL + "?utm_source=newsletter")
        second_id, is_new = create_posting(url=URL + "?utm_source=digest&ref=mail")

        assert second_id == first_id
        assert not is_new

    def test_null_description_keeps_stored_value(self):
        posting_id, _ = create_posting(description="Build the platform.")
        create_posting(description=None)

        assert get_posting(posting_id).description == "Build the platform."

    def test_salary_fields_merge_independently(self):
        """Test a later partial salary fills gaps without erasing earlier fields."""
        posting_id, _ = create_posting(salary=Salary(min=80000, currency="EUR"))
        create_posting(salary=Salary(max=100000))

        salary = get_posting(posting_id).salary
        assert salary.min == 80000
        assert salary.max == 100000
        assert salary.currency == "EUR"

    def test_merge_keeps_processing_state(self):
        posting_id, _ = create_posting()
        with get_session() as session:
            PostingRepository(session).set_state(posting_id, ProcessingState.PROCESSING)

        create_posting(title="Updated")

        assert get_posting(posting_id).processing_state == ProcessingState.PROCESSING

    def test_get_by_id_missing(self):
        assert get_posting(999) is None


class TestConcurrentUpsert:
    """Threads discovering the same posting at once, on a file database."""

    def test_first_insert_race_creates_one_posting(self, file_database):
        workers = 8
        barrier = threading.Barrier(workers)
        lock = threading.Lock()
        results, errors = [], []

        def discover(i):
            try:
                barrier.wait(5)
                result = create_posting(url=URL + f"?utm_source=t{i}")
            except Exception as e:
                with lock:
                    errors.append(e)
                return
            with lock:
                results.append(result)

        threads = [threading.Thread(target=discover, args=(i,)) for i in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(30)

        assert errors == []
        assert len(results) == workers
        assert len({posting_id for posting_id, _ in results}) == 1
        assert sum(1 for _, is_new in results if is_new) == 1


@pytest.mark.usefixtures("database")
class TestPostingState:
    """Tests for the processing state machine."""

    def test_forward_transitions(self):
        posting_id, _ = create_posting()
        with get_session() as session:
            repo = PostingRepository(session)
            assert repo.set_state(posting_id, ProcessingState.PROCESSING) == ProcessingState.PENDING
            assert repo.set_state(posting_id, ProcessingState.COMPLETED) == ProcessingState.PROCESSING

        assert get_posting(posting_id).processing_state == ProcessingState.COMPLETED

    def test_backward_transition_rejected(self):
        posting_id, _ = create_posting()
        with get_session() as session:
            repo = PostingRepository(session)
            repo.set_state(posting_id, ProcessingState.PROCESSING)
            repo.set_state(posting_id, ProcessingState.COMPLETED)

        with pytest.raises(InvalidStateTransition) as exc_info:
            with get_session() as session:
                PostingRepository(session).set_state(posting_id, ProcessingState.PROCESSING)

        assert exc_info.value.current == "completed"
        assert get_posting(posting_id).processing_state == ProcessingState.COMPLETED

    def test_failed_can_be_retried(self):
        posting_id, _ = create_posting()
        with get_session() as session:
            repo = PostingRepository(session)
            repo.set_state(posting_id, ProcessingState.PROCESSING)
            repo.set_state(posting_id, ProcessingState.FAILED)
            assert repo.set_state(posting_id, ProcessingState.PROCESSING) == ProcessingState.FAILED

    def test_missing_posting(self):
        with pytest.raises(RecordNotFoundError):
            with get_session() as session:
                PostingRepository(session).set_state(999, ProcessingState.PROCESSING)

    def test_reset_state(self):
        posting_id, _ = create_posting()
        with get_session() as session:
            repo = PostingRepository(session)
            repo.set_state(posting_id, ProcessingState.PROCESSING)
            repo.set_state(posting_id, ProcessingState.COMPLETED)
            repo.reset_state(posting_id)

        assert get_posting(posting_id).processing_state == ProcessingState.PENDING

    def test_ids_in_state(self):
        pending_id, _ = create_posting(url="https://example.com/a")
        failed_id, _ = create_posting(url="https://example.com/b")
        processing_id, _ = create_posting(url="https://example.com/c")
        with get_session() as session:
            repo = PostingRepository(session)
            repo.set_state(failed_id, ProcessingState.PROCESSING)
            repo.set_state(failed_id, ProcessingState.FAILED)
            repo.set_state(processing_id, ProcessingState.PROCESSING)

            assert repo.get_ids_in_state(ProcessingState.PENDING, ProcessingState.FAILED) == [pending_id, failed_id]


@pytest.mark.usefixtures("database")
class TestPostingContent:
    """Tests for enrichment results, embeddings and deletion."""

    def test_merge_content(self):
        posting_id, _ = create_posting()
        with get_session() as session:
            changed = PostingRepository(session).merge_content(
                posting_id, description="Details", salary=Salary(min=50, period="hourly")
            )

        posting = get_posting(posting_id)
        assert changed
        assert posting.description == "Details"
        assert posting.salary.min == 50
        assert posting.salary.period == "hourly"

    def test_merge_nothing(self):
        posting_id, _ = create_posting(description="Keep me")
        with get_session() as session:
            assert not PostingRepository(session).merge_content(posting_id, description=None, salary=Salary())

        assert get_posting(posting_id).description == "Keep me"

    def test_set_embedding_round_trip(self):
        posting_id, _ = create_posting()
        with get_session() as session:
            PostingRepository(session).set_embedding(posting_id, Embedding(vector=(0.5, -0.25), model="m1"))

        embedding = get_posting(posting_id).embedding
        assert embedding.model == "m1"
        assert embedding.vector == (0.5, -0.25)

    def test_embedding_queries_respect_model(self):
        a_id, _ = create_posting(url="https://example.com/a")
        b_id, _ = create_posting(url="https://example.com/b")
        c_id, _ = create_posting(url="https://example.com/c")
        with get_session() as session:
            repo = PostingRepository(session)
            repo.set_embedding(a_id, Embedding(vector=(1.0,), model="current"))
            repo.set_embedding(b_id, Embedding(vector=(1.0,), model="old"))

            assert [p.id for p in repo.get_postings_with_embedding("current")] == [a_id]
            assert [p.id for p in repo.get_postings_without_embedding("current")] == [b_id, c_id]

    def test_embedded_blacklisted_postings_excluded(self):
        posting_id, _ = create_posting()
        with get_session() as session:
            repo = PostingRepository(session)
            repo.set_embedding(posting_id, Embedding(vector=(1.0,), model="m"))
            repo.set_blacklisted(posting_id, True, reason="crypto")

            assert repo.get_postings_with_embedding("m") == []
            assert len(repo.get_postings_with_embedding("m", exclude_blacklisted=False)) == 1

    def test_delete(self):
        posting_id, _ = create_posting()
        with get_session() as session:
            assert PostingRepository(session).delete(posting_id)
        with get_session() as session:
            assert not PostingRepository(session).delete(posting_id)

        assert get_posting(posting_id) is None

    def test_stats(self):
        posting_id, _ = create_posting(salary=Salary(min=1))
        create_posting(url="https://example.com/other", description="text")
        with get_session() as session:
            repo = PostingRepository(session)
            repo.set_blacklisted(posting_id, True)
            stats = repo.get_stats()

        assert stats["total"] == 2
        assert stats["by_state"]["pending"] == 2
        assert stats["blacklisted"] == 1
        assert stats["with_salary"] == 1
        assert stats["with_description"] == 1
        assert stats["with_embedding"] == 0


@pytest.mark.usefixtures("database")
class TestBlacklistFlag:
    """Tests for the blacklist flag."""

    def test_changed_flag(self):
        posting_id, _ = create_posting()
        with get_session() as session:
            repo = PostingRepository(session)
            assert repo.set_blacklisted(posting_id, True, reason="crypto")
            assert not repo.set_blacklisted(posting_id, True, reason="crypto")

        posting = get_posting(posting_id)
        assert posting.blacklisted
        assert posting.blacklist_reason == "crypto"

    def test_unblacklist_clears_reason(self):
        posting_id, _ = create_posting()
        with get_session() as session:
            repo = PostingRepository(session)
            repo.set_blacklisted(posting_id, True, reason="crypto")
            assert repo.set_blacklisted(posting_id, False)

        assert get_posting(posting_id).blacklist_reason is None

    def test_missing_posting(self):
        with pytest.raises(RecordNotFoundError):
            with get_session() as session:
                PostingRepository(session).set_blacklisted(999, True)

    def test_list_hides_blacklisted(self):
        visible_id, _ = create_posting(url="https://example.com/a")
        hidden_id, _ = create_posting(url="https://example.com/b")
        with get_session() as session:
            PostingRepository(session).set_blacklisted(hidden_id, True)

        with get_session() as session:
            repo = PostingRepository(session)
            assert [p.id for p in repo.list_postings()] == [visible_id]
            assert len(repo.list_postings(PostingFilters(include_blacklisted=True))) == 2

    def test_reset_all(self):
        for suffix in ("a", "b"):
            posting_id, _ = create_posting(url=f"https://example.com/{suffix}")
            with get_session() as session:
                PostingRepository(session).set_blacklisted(posting_id, True)

        with get_session() as session:
            assert PostingRepository(session).reset_all_blacklisted() == 2
            assert PostingRepository(session).get_stats()["blacklisted"] == 0


@pytest.mark.usefixtures("database")
class TestKeywordRepository:
    """Tests for blacklist keywords."""

    def test_replace_all_dedupes_and_strips(self):
        with get_session() as session:
            keywords = KeywordRepository(session).replace_all(["crypto", "  gambling ", "", "crypto"])

        assert [k.text for k in keywords] == ["crypto", "gambling"]
        assert all(k.embedding is None for k in keywords)

    def test_replace_all_drops_previous(self):
        with get_session() as session:
            KeywordRepository(session).replace_all(["crypto"])
        with get_session() as session:
            KeywordRepository(session).replace_all(["defense"])
        with get_session() as session:
            assert [k.text for k in KeywordRepository(session).list_all()] == ["defense"]

    def test_embeddings(self):
        with get_session() as session:
            repo = KeywordRepository(session)
            first, second = repo.replace_all(["crypto", "gambling"])
            assert repo.set_embedding(first.id, Embedding(vector=(1.0, 0.0), model="m"))

            assert [k.id for k in repo.get_with_embedding("m")] == [first.id]
            assert [k.id for k in repo.get_without_embedding("m")] == [second.id]
            assert repo.get_by_id(first.id).embedding.vector == (1.0, 0.0)

    def test_set_embedding_for_replaced_keyword(self):
        with get_session() as session:
            assert not KeywordRepository(session).set_embedding(999, Embedding(vector=(1.0,), model="m"))


@pytest.mark.usefixtures("database")
class TestSourceMessageRepository:
    """Tests for stored messages."""

    def test_save_is_idempotent(self):
        message = SourceMessage(external_id="<1@mail>", subject="Jobs", is_job_related=True)
        with get_session() as session:
            stored, is_new = SourceMessageRepository(session).save(message)
        with get_session() as session:
            again, is_new_again = SourceMessageRepository(session).save(message)

        assert is_new
        assert not is_new_again
        assert again.id == stored.id

    def test_known_external_ids(self):
        with get_session() as session:
            repo = SourceMessageRepository(session)
            repo.save(SourceMessage(external_id="a"))
            assert repo.known_external_ids(["a", "b"]) == {"a"}
            assert repo.known_external_ids([]) == set()

    def test_mark_processed_once(self):
        with get_session() as session:
            repo = SourceMessageRepository(session)
            stored, _ = repo.save(SourceMessage(external_id="a", is_job_related=True))
            assert [m.id for m in repo.list_unprocessed_job_related()] == [stored.id]

            assert repo.mark_processed(stored.id)
            assert not repo.mark_processed(stored.id)
            assert repo.list_unprocessed_job_related() == []
            assert repo.get_stats() == {"total": 1, "job_related": 1, "processed": 1}


@pytest.mark.usefixtures("database")
class TestPlatformRepository:
    """Tests for platform crawl rules."""

    def test_upsert_and_lookup(self):
        with get_session() as session:
            repo = PlatformRepository(session)
            repo.upsert(Platform(hostname="LinkedIn", can_crawl=False, skip_reason="requires login"))

            platform = repo.get_by_hostname("linkedin")
            assert platform.can_crawl is False
            assert platform.skip_reason == "requires login"

    def test_upsert_updates(self):
        with get_session() as session:
            repo = PlatformRepository(session)
            repo.upsert(Platform(hostname="indeed", can_crawl=False))
            repo.upsert(Platform(hostname="indeed", can_crawl=True))

            assert repo.get_by_hostname("indeed").can_crawl is True
            assert len(repo.list_all()) == 1

    def test_unknown_hostname(self):
        with get_session() as session:
            assert PlatformRepository(session).get_by_hostname("nowhere") is None

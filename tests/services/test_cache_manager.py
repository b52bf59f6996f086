import json
import threading
from datetime import timedelta

import pytest

from vocabsync.data.local_store import LocalStore
from vocabsync.data.db_context import create_db_engine
from vocabsync.errors import RecordNotFoundError
from vocabsync.models.base import RecordState
from vocabsync.models.pending_change import ChangeAction, EntityType
from vocabsync.services.cache_manager import PENDING_COUNT_CHANGED, CacheManager

from conftest import make_book, make_word, owner


def _actions(cache):
    return [(c.entity_type, c.action, c.entity_id) for c in cache.fetch_sync_queue()]


# --- LIVROS ---

def test_save_new_book_enqueues_create(cache):
    book = cache.save_book(make_book())

    assert _actions(cache) == [(EntityType.BOOK, ChangeAction.CREATE, book.id)]
    assert cache.books.get_raw(book.id).needs_sync is True
    assert [b.id for b in cache.fetch_books(owner())] == [book.id]


def test_save_existing_book_enqueues_update_and_bumps_updated_at(cache):
    book = cache.save_book(make_book())
    edited = cache.save_book(book.model_copy(update={"title": "Nineteen Eighty-Four"}))

    assert [c.action for c in cache.fetch_sync_queue()] == [ChangeAction.CREATE, ChangeAction.UPDATE]
    assert edited.updated_at > book.updated_at
    assert cache.get_book(book.id).title == "Nineteen Eighty-Four"


def test_queue_payload_is_a_snapshot(cache):
    book = cache.save_book(make_book(title="Primeira versão"))
    cache.save_book(book.model_copy(update={"title": "Segunda versão"}))

    first, second = cache.fetch_sync_queue()
    assert json.loads(first.payload)["title"] == "Primeira versão"
    assert json.loads(second.payload)["title"] == "Segunda versão"


def test_queue_created_at_is_strictly_increasing(cache):
    book = cache.save_book(make_book())
    for i in range(20):
        cache.save_word(make_word(word=f"w{i}", book_id=book.id))

    stamps = [c.created_at for c in cache.fetch_sync_queue()]
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


def test_save_from_server_does_not_enqueue(cache):
    remote = make_book(title="Vindo do servidor")
    saved = cache.save_book(remote, needs_sync=False)

    assert cache.pending_count() == 0
    assert saved.updated_at == remote.updated_at
    assert cache.books.get_raw(remote.id).needs_sync is False


def test_fetch_books_is_scoped_to_owner(cache):
    mine = cache.save_book(make_book())
    cache.save_book(make_book(owner_id="outro-usuario"))

    assert [b.id for b in cache.fetch_books(owner())] == [mine.id]


def test_soft_deleted_book_is_invisible(cache):
    book = cache.save_book(make_book())
    assert cache.delete_book(book.id) is True

    assert cache.fetch_books(owner()) == []
    assert cache.get_book(book.id) is None

    raw = cache.books.get_raw(book.id)
    assert raw.state == RecordState.PENDING_DELETE
    assert raw.needs_sync is True
    assert _actions(cache)[-1] == (EntityType.BOOK, ChangeAction.DELETE, book.id)


def test_delete_of_missing_or_deleted_book_is_noop(cache):
    assert cache.delete_book("nao-existe") is False

    book = cache.save_book(make_book())
    cache.delete_book(book.id)
    assert cache.delete_book(book.id) is False
    assert cache.pending_count() == 2


def test_book_delete_cascades_to_its_words(cache):
    book = cache.save_book(make_book())
    word = cache.save_word(make_word(book_id=book.id))
    global_word = cache.save_word(make_word(word="global"))

    cache.delete_book(book.id)

    assert cache.fetch_words(book.id) == []
    assert [w.id for w in cache.fetch_words()] == [global_word.id]
    delete_entries = [(c.entity_type, c.entity_id) for c in cache.fetch_sync_queue() if c.action == ChangeAction.DELETE]
    # Palavras são enfileiradas antes do livro
    assert delete_entries == [(EntityType.VOCAB_WORD, word.id), (EntityType.BOOK, book.id)]


def test_hard_delete_removes_record_and_its_queue_entries(cache):
    book = cache.save_book(make_book())
    other = cache.save_book(make_book(title="Outro"))

    assert cache.delete_book(book.id, hard=True) is True

    assert cache.books.get_raw(book.id) is None
    assert _actions(cache) == [(EntityType.BOOK, ChangeAction.CREATE, other.id)]


def test_resave_after_confirmed_delete_is_create(cache):
    book = cache.save_book(make_book())
    cache.delete_book(book.id)
    for change in cache.fetch_sync_queue():
        cache.confirm_change(change)
    assert cache.books.get_raw(book.id).state == RecordState.GONE

    cache.save_book(book)
    assert _actions(cache) == [(EntityType.BOOK, ChangeAction.CREATE, book.id)]
    assert cache.get_book(book.id) is not None


# --- PALAVRAS ---

def test_word_round_trip_preserves_every_field(cache):
    original = make_word(
        synonyms=["transient", "fleeting", "brief"],
        antonyms=["permanent", "lasting"],
        mastered=True,
    )
    saved = cache.save_word(original)
    loaded = cache.get_word(original.id)

    assert loaded.model_dump() == saved.model_dump()
    assert loaded.synonyms == ["transient", "fleeting", "brief"]
    assert loaded.antonyms == ["permanent", "lasting"]
    assert loaded.example_sentence == original.example_sentence
    assert loaded.created_at == original.created_at


def test_fetch_words_filters_by_book_newest_first(cache):
    book = cache.save_book(make_book())
    older = cache.save_word(make_word(word="old", book_id=book.id))
    newer = cache.save_word(make_word(word="new", book_id=book.id))
    cache.save_word(make_word(word="solta"))

    assert [w.id for w in cache.fetch_words(book.id)] == [newer.id, older.id]
    assert len(cache.fetch_words()) == 3


def test_update_mastered_status(cache):
    word = cache.save_word(make_word())
    updated = cache.update_mastered_status(word.id, True)

    assert updated.mastered is True
    assert updated.updated_at > word.updated_at
    assert cache.get_word(word.id).mastered is True

    last = cache.fetch_sync_queue()[-1]
    assert (last.action, json.loads(last.payload)["mastered"]) == (ChangeAction.UPDATE, True)


def test_update_mastered_status_on_missing_word(cache):
    with pytest.raises(RecordNotFoundError):
        cache.update_mastered_status("nao-existe", True)

    word = cache.save_word(make_word())
    cache.delete_word(word.id)
    with pytest.raises(RecordNotFoundError):
        cache.update_mastered_status(word.id, True)


def test_delete_word(cache):
    word = cache.save_word(make_word())
    assert cache.delete_word(word.id) is True
    assert cache.get_word(word.id) is None
    assert cache.words.get_raw(word.id).state == RecordState.PENDING_DELETE


# --- FILA ---

def test_confirm_clears_needs_sync_only_after_last_entry(cache):
    book = cache.save_book(make_book())
    cache.save_book(book.model_copy(update={"title": "Editado"}))
    first, second = cache.fetch_sync_queue()

    cache.confirm_change(first)
    assert cache.books.get_raw(book.id).needs_sync is True

    cache.confirm_change(second)
    assert cache.books.get_raw(book.id).needs_sync is False
    assert cache.pending_count() == 0


def test_confirmed_delete_is_swept(cache):
    book = cache.save_book(make_book())
    cache.delete_book(book.id)
    for change in cache.fetch_sync_queue():
        cache.confirm_change(change)

    assert cache.sweep_deleted() == 1
    assert cache.books.get_raw(book.id) is None


def test_record_failure_increments_retry_count(cache):
    cache.save_book(make_book())
    change = cache.fetch_sync_queue()[0]

    assert cache.record_failure(change) == 1
    assert cache.record_failure(change) == 2
    assert cache.fetch_sync_queue()[0].retry_count == 2


def test_discard_local_changes(cache):
    book = cache.save_book(make_book())
    other = cache.save_book(make_book(title="Outro"))

    assert cache.discard_local_changes(EntityType.BOOK, book.id) == 1
    assert cache.books.get_raw(book.id).needs_sync is False
    assert _actions(cache) == [(EntityType.BOOK, ChangeAction.CREATE, other.id)]


def test_clear_sync_queue(cache):
    kept = cache.save_book(make_book())
    removed = cache.save_book(make_book(title="Apagado"))
    cache.delete_book(removed.id)

    cache.clear_sync_queue()

    assert cache.pending_count() == 0
    assert cache.books.get_raw(kept.id).needs_sync is False
    assert cache.books.get_raw(removed.id).state == RecordState.GONE
    assert [b.id for b in cache.fetch_books(owner())] == [kept.id]


def test_clear_all_cache(cache, kv_store):
    cache.save_book(make_book())
    cache.save_word(make_word())
    kv_store.set("qualquer", "coisa")

    cache.clear_all_cache()

    assert cache.fetch_books(owner()) == []
    assert cache.fetch_words() == []
    assert cache.pending_count() == 0
    assert kv_store.get("qualquer") is None


def test_pending_count_event(cache):
    counts = []
    unsubscribe = cache.events.subscribe(PENDING_COUNT_CHANGED, counts.append)

    book = cache.save_book(make_book())
    cache.save_word(make_word(book_id=book.id))
    cache.confirm_change(cache.fetch_sync_queue()[0])
    unsubscribe()
    cache.save_word(make_word(word="ignorada"))

    assert counts == [1, 2, 1]


def test_concurrent_saves_are_serialised(tmp_path):
    engine = create_db_engine(str(tmp_path / "cache.db"))
    cache = CacheManager(LocalStore(engine))
    errors = []

    def worker(n):
        try:
            for i in range(10):
                cache.save_word(make_word(word=f"t{n}-{i}"))
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(cache.fetch_words()) == 40
    stamps = [c.created_at for c in cache.fetch_sync_queue()]
    assert len(stamps) == 40
    assert len(set(stamps)) == 40
    engine.dispose()


def test_remote_word_round_trip_through_book_listing(cache):
    book = cache.save_book(make_book(), needs_sync=False)
    word = make_word(book_id=book.id, synonyms=["a", "b", "c"], mastered=True)

    cache.save_word(word, needs_sync=False)

    fetched = cache.fetch_words(book_id=word.book_id)
    assert [w.model_dump() for w in fetched] == [word.model_dump()]


def test_bulk_saves_from_server(cache):
    books = cache.save_books([make_book(title="A"), make_book(title="B")])
    cache.save_words([make_word(word="x", book_id=books[0].id), make_word(word="y", book_id=books[0].id)])

    assert cache.pending_count() == 0
    assert len(cache.fetch_books(owner())) == 2
    assert {w.word for w in cache.fetch_words(books[0].id)} == {"x", "y"}
    assert cache.cache_size() == 0


def test_hard_delete_of_book_removes_its_words(cache):
    book = cache.save_book(make_book())
    word = cache.save_word(make_word(book_id=book.id))
    loose = cache.save_word(make_word(word="solta"))

    cache.delete_book(book.id, hard=True)

    assert cache.words.get_raw(word.id) is None
    assert [w.id for w in cache.fetch_words()] == [loose.id]
    assert _actions(cache) == [(EntityType.VOCAB_WORD, ChangeAction.CREATE, loose.id)]


def test_apply_remote_respects_unsynced_newer_local(cache):
    local = cache.save_book(make_book(title="Local"))
    stale = local.model_copy(update={"title": "Servidor", "updated_at": local.updated_at - timedelta(seconds=1)})

    assert cache.apply_remote(EntityType.BOOK, stale, lambda local_at, remote_at: local_at >= remote_at) is False
    assert cache.get_book(local.id).title == "Local"
    assert cache.pending_count() == 1


def test_concurrent_save_waits_for_remote_apply(tmp_path):
    engine = create_db_engine(str(tmp_path / "cache.db"))
    cache = CacheManager(LocalStore(engine))
    local = cache.save_book(make_book(title="Local"))
    remote = local.model_copy(update={"title": "Servidor", "updated_at": local.updated_at + timedelta(seconds=1)})
    ui_edit = local.model_copy(update={"title": "Editado na UI"})
    ui_thread = threading.Thread(target=cache.save_book, args=(ui_edit,))
    blocked = []

    def decide(local_updated_at, remote_updated_at):
        # Save da UI chega no meio da reconciliação
        ui_thread.start()
        ui_thread.join(timeout=0.2)
        blocked.append(ui_thread.is_alive())
        return False

    assert cache.apply_remote(EntityType.BOOK, remote, decide) is True
    ui_thread.join(timeout=5)

    assert blocked == [True]
    stored = cache.books.get_raw(local.id)
    assert stored.title == "Editado na UI"
    assert stored.needs_sync is True
    assert [c.action for c in cache.fetch_sync_queue()] == [ChangeAction.UPDATE]
    engine.dispose()

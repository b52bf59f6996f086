import logging
from datetime import datetime
from typing import Callable, List, Optional, Union

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlmodel import Session, select

from vocabsync.data.book_repository import BookRepository
from vocabsync.data.kv_store import KVStore
from vocabsync.data.local_store import LocalStore
from vocabsync.data.sync_queue import SyncQueue
from vocabsync.data.vocab_repository import VocabWordRepository
from vocabsync.errors import RecordNotFoundError
from vocabsync.models.base import RecordState, next_timestamp
from vocabsync.models.book import Book, CachedBook
from vocabsync.models.pending_change import ChangeAction, EntityType, PendingChange
from vocabsync.models.vocab_word import CachedVocabWord, VocabWord
from vocabsync.services.events import EventEmitter

logger = logging.getLogger("CacheManager")

PENDING_COUNT_CHANGED = "pending_count_changed"

CACHED_MODELS = {
    EntityType.BOOK: CachedBook,
    EntityType.VOCAB_WORD: CachedVocabWord,
}


class CacheManager:
    """
    Fachada CRUD sobre o Local Store: única porta de leitura/escrita de livros e
    palavras. Toda mutação que precisa chegar ao servidor grava o registro E a
    PendingChange na mesma transação. Nenhum método aqui faz I/O de rede.
    """

    def __init__(self, store: LocalStore, kv_store: Optional[KVStore] = None):
        self.store = store
        self.kv_store = kv_store
        self.books = BookRepository(store)
        self.words = VocabWordRepository(store)
        self.queue = SyncQueue(store)
        self.events = EventEmitter()
        logger.info("CacheManager inicializado")

    # --- LIVROS ---

    def fetch_books(self, owner_id: str) -> List[Book]:
        books = [cached.to_book() for cached in self.books.list_for_owner(owner_id)]
        logger.debug(f"{len(books)} livros em cache para o usuário {owner_id}")
        return books

    def get_book(self, book_id: str) -> Optional[Book]:
        cached = self.books.get_visible(book_id)
        return cached.to_book() if cached else None

    def save_book(self, book: Book, needs_sync: bool = True) -> Book:
        """
        Grava o livro no cache. Com needs_sync=True (ação do usuário) o updated_at
        avança e uma PendingChange create/update entra na fila. Com needs_sync=False
        (estado vindo do servidor) nada é enfileirado e o updated_at remoto é mantido.
        """
        with self.store.transaction() as session:
            cached = session.get(CachedBook, book.id)
            is_new = cached is None or cached.state == RecordState.GONE

            if needs_sync:
                previous = cached.updated_at if cached else None
                book = book.model_copy(update={"updated_at": next_timestamp(previous)})

            if cached is None:
                cached = CachedBook.from_book(book)
            else:
                cached.update_from(book)

            session.add(cached)
            if needs_sync:
                self._enqueue(
                    session,
                    EntityType.BOOK,
                    book.id,
                    ChangeAction.CREATE if is_new else ChangeAction.UPDATE,
                    payload=book.model_dump_json(),
                )
                cached.needs_sync = True
            else:
                cached.needs_sync = SyncQueue.remaining_for(session, EntityType.BOOK, book.id) > 0

        logger.info(f"Livro salvo no cache: '{book.title}' (needs_sync={needs_sync})")
        if needs_sync:
            self._notify_pending_count()
        return cached.to_book()

    def save_books(self, books: List[Book], needs_sync: bool = False) -> List[Book]:
        logger.debug(f"Salvando {len(books)} livros no cache")
        return [self.save_book(book, needs_sync=needs_sync) for book in books]

    def delete_book(self, book_id: str, hard: bool = False) -> bool:
        """
        hard=False (ação do usuário): tombstone + PendingChange 'delete'. As palavras
        do livro também são marcadas, como o ON DELETE CASCADE do servidor faria.
        hard=True (após delete confirmado): remoção física do livro e das suas
        palavras, junto com as pendências de todos eles.
        """
        with self.store.transaction() as session:
            cached = session.get(CachedBook, book_id)
            if cached is None:
                return False

            if hard:
                words = session.exec(
                    select(CachedVocabWord).where(CachedVocabWord.book_id == book_id)
                ).all()
                for word in words:
                    self._hard_delete(session, EntityType.VOCAB_WORD, word)
                self._hard_delete(session, EntityType.BOOK, cached)
            else:
                if cached.state != RecordState.ACTIVE:
                    return False
                words = session.exec(
                    select(CachedVocabWord).where(
                        CachedVocabWord.book_id == book_id,
                        CachedVocabWord.state == RecordState.ACTIVE,
                    )
                ).all()
                for word in words:
                    self._soft_delete(session, EntityType.VOCAB_WORD, word)
                self._soft_delete(session, EntityType.BOOK, cached)
                logger.debug(f"Livro {book_id} marcado para exclusão ({len(words)} palavras junto)")

        logger.info(f"Livro removido do cache: {book_id} (hard={hard})")
        self._notify_pending_count()
        return True

    # --- PALAVRAS ---

    def fetch_words(self, book_id: Optional[str] = None) -> List[VocabWord]:
        words = [cached.to_vocab_word() for cached in self.words.list_words(book_id)]
        logger.debug(f"{len(words)} palavras em cache (livro={book_id})")
        return words

    def get_word(self, word_id: str) -> Optional[VocabWord]:
        cached = self.words.get_visible(word_id)
        return cached.to_vocab_word() if cached else None

    def save_word(self, word: VocabWord, needs_sync: bool = True) -> VocabWord:
        with self.store.transaction() as session:
            cached = session.get(CachedVocabWord, word.id)
            is_new = cached is None or cached.state == RecordState.GONE

            if needs_sync:
                previous = cached.updated_at if cached else None
                word = word.model_copy(update={"updated_at": next_timestamp(previous)})

            if cached is None:
                cached = CachedVocabWord.from_vocab_word(word)
            else:
                cached.update_from(word)

            session.add(cached)
            if needs_sync:
                self._enqueue(
                    session,
                    EntityType.VOCAB_WORD,
                    word.id,
                    ChangeAction.CREATE if is_new else ChangeAction.UPDATE,
                    payload=word.model_dump_json(),
                )
                cached.needs_sync = True
            else:
                cached.needs_sync = SyncQueue.remaining_for(session, EntityType.VOCAB_WORD, word.id) > 0

        logger.info(f"Palavra salva no cache: '{word.word}' (needs_sync={needs_sync})")
        if needs_sync:
            self._notify_pending_count()
        return cached.to_vocab_word()

    def save_words(self, words: List[VocabWord], needs_sync: bool = False) -> List[VocabWord]:
        logger.debug(f"Salvando {len(words)} palavras no cache")
        return [self.save_word(word, needs_sync=needs_sync) for word in words]

    def update_mastered_status(self, word_id: str, mastered: bool) -> VocabWord:
        """Atalho para a mutação mais frequente: não exige o registro completo do chamador."""
        with self.store.transaction() as session:
            cached = session.get(CachedVocabWord, word_id)
            if cached is None or cached.state != RecordState.ACTIVE:
                raise RecordNotFoundError("VocabWord", word_id)

            cached.mastered = mastered
            cached.updated_at = next_timestamp(cached.updated_at)
            cached.needs_sync = True
            session.add(cached)

            word = cached.to_vocab_word()
            self._enqueue(
                session,
                EntityType.VOCAB_WORD,
                word_id,
                ChangeAction.UPDATE,
                payload=word.model_dump_json(),
            )

        logger.info(f"Status 'mastered' de {word_id} atualizado para {mastered}")
        self._notify_pending_count()
        return word

    def delete_word(self, word_id: str, hard: bool = False) -> bool:
        with self.store.transaction() as session:
            cached = session.get(CachedVocabWord, word_id)
            if cached is None:
                return False
            if hard:
                self._hard_delete(session, EntityType.VOCAB_WORD, cached)
            else:
                if cached.state != RecordState.ACTIVE:
                    return False
                self._soft_delete(session, EntityType.VOCAB_WORD, cached)

        logger.info(f"Palavra removida do cache: {word_id} (hard={hard})")
        self._notify_pending_count()
        return True

    # --- FILA DE SYNC ---

    def pending_count(self) -> int:
        return self.queue.count()

    def fetch_sync_queue(self) -> List[PendingChange]:
        items = self.queue.pending()
        logger.debug(f"{len(items)} itens na fila de sync")
        return items

    def confirm_change(self, change: PendingChange):
        """
        O servidor confirmou a alteração: remove da fila e, se era a última
        pendência da entidade, limpa needs_sync. Delete confirmado vira GONE.
        """
        model_type = CACHED_MODELS[EntityType(change.entity_type)]
        with self.store.transaction() as session:
            stored = session.get(PendingChange, change.id)
            if stored is not None:
                session.delete(stored)
                session.flush()

            record = session.get(model_type, change.entity_id)
            if record is not None:
                if change.action == ChangeAction.DELETE and record.state == RecordState.PENDING_DELETE:
                    record.state = RecordState.GONE
                remaining = SyncQueue.remaining_for(session, change.entity_type, change.entity_id)
                record.needs_sync = remaining > 0
                session.add(record)

        logger.debug(f"Alteração confirmada: {change.entity_type} {change.action} {change.entity_id}")
        self._notify_pending_count()

    def record_failure(self, change: PendingChange) -> int:
        updated = self.queue.record_failure(change.id)
        return updated.retry_count if updated else change.retry_count

    def discard_local_changes(self, entity_type: EntityType, entity_id: str) -> int:
        """A versão remota venceu o conflito: as pendências locais da entidade são descartadas."""
        model_type = CACHED_MODELS[entity_type]
        with self.store.transaction() as session:
            removed = self._discard_pending(session, entity_type, entity_id)
            record = session.get(model_type, entity_id)
            if record is not None:
                record.needs_sync = False
                session.add(record)

        if removed:
            logger.info(f"{removed} alterações locais descartadas para {entity_type.value} {entity_id}")
            self._notify_pending_count()
        return removed

    def apply_remote(
        self,
        entity_type: EntityType,
        remote: Union[Book, VocabWord],
        local_wins: Callable[[datetime, datetime], bool],
    ) -> bool:
        """
        Aplica um registro vindo do servidor. A leitura do estado local, a decisão
        do conflito e a escrita acontecem na mesma transação, então um save local
        concorrente fica inteiro antes ou inteiro depois. Retorna True se o remoto
        foi gravado.
        """
        model_type = CACHED_MODELS[entity_type]
        with self.store.transaction() as session:
            cached = session.get(model_type, remote.id)
            if cached is not None and cached.needs_sync:
                if local_wins(cached.updated_at, remote.updated_at):
                    return False
                # Registro inteiro: o lado perdedor é descartado, sem merge de campos
                removed = self._discard_pending(session, entity_type, remote.id)
                logger.info(f"{removed} alterações locais descartadas para {entity_type.value} {remote.id}")
            else:
                removed = 0

            if cached is None:
                if entity_type == EntityType.BOOK:
                    cached = CachedBook.from_book(remote)
                else:
                    cached = CachedVocabWord.from_vocab_word(remote)
            else:
                cached.update_from(remote)
            cached.needs_sync = False
            session.add(cached)

        if removed:
            self._notify_pending_count()
        return True

    def sweep_deleted(self) -> int:
        removed = self.books.sweep_gone() + self.words.sweep_gone()
        if removed:
            logger.debug(f"Varredura removeu {removed} registros excluídos")
        return removed

    def clear_sync_queue(self):
        """
        Descarta TODAS as alterações pendentes (ação explícita do usuário).
        Registros voltam a needs_sync=False e exclusões pendentes viram GONE.
        """
        logger.warning("Limpando a fila de sync")
        with self.store.transaction() as session:
            session.execute(sa_delete(PendingChange))
            for model_type in CACHED_MODELS.values():
                session.execute(
                    sa_update(model_type)
                    .where(model_type.state == RecordState.PENDING_DELETE)
                    .values(state=RecordState.GONE)
                )
                session.execute(sa_update(model_type).values(needs_sync=False))
        self._notify_pending_count()

    # --- GERENCIAMENTO DO CACHE ---

    def clear_all_cache(self):
        """Remove todos os dados offline. Usar com cuidado."""
        self.store.clear_all()
        if self.kv_store is not None:
            self.kv_store.clear()
        self._notify_pending_count()

    def cache_size(self) -> int:
        return self.store.size_on_disk()

    # --- INTERNOS ---

    def _enqueue(
        self,
        session: Session,
        entity_type: EntityType,
        entity_id: str,
        action: ChangeAction,
        payload: Optional[str] = None,
    ) -> PendingChange:
        # created_at estritamente crescente: é a ordem de replay
        created_at = next_timestamp(SyncQueue.last_created_at(session))
        change = PendingChange(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            payload=payload,
            created_at=created_at,
        )
        session.add(change)
        logger.debug(f"Adicionado à fila: {entity_type.value} {action.value} {entity_id}")
        return change

    def _soft_delete(self, session: Session, entity_type: EntityType, cached: Union[CachedBook, CachedVocabWord]):
        cached.state = RecordState.PENDING_DELETE
        cached.needs_sync = True
        cached.updated_at = next_timestamp(cached.updated_at)
        session.add(cached)
        self._enqueue(session, entity_type, cached.id, ChangeAction.DELETE)

    def _hard_delete(self, session: Session, entity_type: EntityType, cached: Union[CachedBook, CachedVocabWord]):
        self._discard_pending(session, entity_type, cached.id)
        session.delete(cached)

    @staticmethod
    def _discard_pending(session: Session, entity_type: EntityType, entity_id: str) -> int:
        result = session.execute(
            sa_delete(PendingChange).where(
                PendingChange.entity_type == entity_type,
                PendingChange.entity_id == entity_id,
            )
        )
        return result.rowcount or 0

    def _notify_pending_count(self):
        self.events.emit(PENDING_COUNT_CHANGED, self.pending_count())

from typing import List, Optional
from vocabsync.data.local_store import LocalStore
from vocabsync.data.sync_repository import SyncRepository
from vocabsync.models.vocab_word import CachedVocabWord


class VocabWordRepository(SyncRepository[CachedVocabWord]):
    def __init__(self, store: LocalStore):
        super().__init__(store, CachedVocabWord)

    def list_words(self, book_id: Optional[str] = None) -> List[CachedVocabWord]:
        """Sem book_id: todas as palavras do sistema (inclusive as globais)."""
        if book_id is None:
            return self.list_visible()
        return self.list_visible(CachedVocabWord.book_id == book_id)

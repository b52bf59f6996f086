from typing import List
from vocabsync.data.local_store import LocalStore
from vocabsync.data.sync_repository import SyncRepository
from vocabsync.models.book import CachedBook


class BookRepository(SyncRepository[CachedBook]):
    def __init__(self, store: LocalStore):
        super().__init__(store, CachedBook)

    def list_for_owner(self, owner_id: str) -> List[CachedBook]:
        return self.list_visible(CachedBook.owner_id == owner_id)

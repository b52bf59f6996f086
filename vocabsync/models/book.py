from typing import Optional
from sqlmodel import Field
from .base import CachedRecord, DomainModel, RecordState


class Book(DomainModel):
    """Livro da coleção do usuário (objeto de domínio)."""
    owner_id: str
    title: str
    author: str
    cover_image_url: Optional[str] = None


class CachedBook(CachedRecord, table=True):
    __tablename__ = "cached_books"

    owner_id: str = Field(index=True)
    title: str
    author: str
    cover_image_url: Optional[str] = Field(default=None)

    def to_book(self) -> Book:
        return Book(
            id=self.id,
            owner_id=self.owner_id,
            title=self.title,
            author=self.author,
            cover_image_url=self.cover_image_url,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_book(cls, book: Book) -> "CachedBook":
        return cls(id=book.id, **cls._fields_from(book))

    def update_from(self, book: Book):
        for key, value in self._fields_from(book).items():
            setattr(self, key, value)
        # Um save sempre "ressuscita" o registro
        self.state = RecordState.ACTIVE

    @staticmethod
    def _fields_from(book: Book) -> dict:
        return {
            "owner_id": book.owner_id,
            "title": book.title,
            "author": book.author,
            "cover_image_url": book.cover_image_url,
            "created_at": book.created_at,
            "updated_at": book.updated_at,
        }

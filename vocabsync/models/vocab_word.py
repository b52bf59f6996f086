from typing import List, Optional
from sqlalchemy import JSON
from sqlmodel import Field
from .base import CachedRecord, DomainModel, RecordState


class VocabWord(DomainModel):
    """
    Palavra de vocabulário salva a partir de um livro.
    book_id = None indica uma palavra "global", sem livro associado.
    """
    book_id: Optional[str] = None
    word: str
    definition: str
    synonyms: List[str] = Field(default_factory=list)
    antonyms: List[str] = Field(default_factory=list)
    example_sentence: str = ""
    mastered: bool = False


class CachedVocabWord(CachedRecord, table=True):
    __tablename__ = "cached_vocab_words"

    book_id: Optional[str] = Field(default=None, index=True)
    word: str = Field(index=True)
    definition: str

    # Listas ordenadas: salvamos como JSON para preservar a ordem
    synonyms: List[str] = Field(default_factory=list, sa_type=JSON)
    antonyms: List[str] = Field(default_factory=list, sa_type=JSON)

    example_sentence: str = Field(default="")
    mastered: bool = Field(default=False)

    def to_vocab_word(self) -> VocabWord:
        return VocabWord(
            id=self.id,
            book_id=self.book_id,
            word=self.word,
            definition=self.definition,
            synonyms=list(self.synonyms or []),
            antonyms=list(self.antonyms or []),
            example_sentence=self.example_sentence,
            mastered=self.mastered,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    @classmethod
    def from_vocab_word(cls, word: VocabWord) -> "CachedVocabWord":
        return cls(id=word.id, **cls._fields_from(word))

    def update_from(self, word: VocabWord):
        for key, value in self._fields_from(word).items():
            setattr(self, key, value)
        self.state = RecordState.ACTIVE

    @staticmethod
    def _fields_from(word: VocabWord) -> dict:
        return {
            "book_id": word.book_id,
            "word": word.word,
            "definition": word.definition,
            # Copias: o JSON do SQLAlchemy não rastreia mutação in-place
            "synonyms": list(word.synonyms),
            "antonyms": list(word.antonyms),
            "example_sentence": word.example_sentence,
            "mastered": word.mastered,
            "created_at": word.created_at,
            "updated_at": word.updated_at,
        }

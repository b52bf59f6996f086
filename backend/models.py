from datetime import datetime
from typing import List, Optional
from sqlalchemy import JSON
from sqlmodel import Field, SQLModel
from vocabsync.models.base import UTCDateTime, utc_now


class RemoteBook(SQLModel, table=True):
    __tablename__ = "books"

    # UUID gerado no cliente
    id: str = Field(primary_key=True)
    owner_id: str = Field(index=True)
    title: str
    author: str
    cover_image_url: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, index=True)


class RemoteVocabWord(SQLModel, table=True):
    __tablename__ = "vocab_words"

    id: str = Field(primary_key=True)
    # NULL para palavras globais
    book_id: Optional[str] = Field(default=None, index=True)
    word: str
    definition: str
    synonyms: List[str] = Field(default_factory=list, sa_type=JSON)
    antonyms: List[str] = Field(default_factory=list, sa_type=JSON)
    example_sentence: str = Field(default="")
    mastered: bool = Field(default=False)

    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, index=True)

# database/models.py
from uuid import uuid4

from sqlalchemy import (
    Column,
    Integer,
    String,
    BigInteger,
    DateTime,
    Boolean,
    Text,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base


def _uuid() -> str:
    return str(uuid4())


PAGE_TYPES = ("story", "choice", "chat")


class User(Base):
    __tablename__ = "users"
    id = Column(BigInteger, primary_key=True, unique=True)
    username = Column(String, nullable=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    # Spendable currency. Only the ledger writes it.
    balance = Column(Integer, default=0, nullable=False)
    role = Column(String, default="reader")
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_users_balance_non_negative"),)


class Story(Base):
    """Story metadata. Immutable once ``is_published`` is set."""

    __tablename__ = "stories"

    id = Column(String(64), primary_key=True, default=_uuid)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(32), nullable=False, default="all")
    spice_level = Column(Integer, nullable=False, default=1)  # 1-3
    word_count = Column(Integer, nullable=False, default=0)
    path_count = Column(Integer, nullable=False, default=0)
    is_published = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    pages = relationship(
        "StoryPage",
        back_populates="story",
        order_by="StoryPage.ordinal",
        cascade="all, delete-orphan",
    )


class StoryPage(Base):
    __tablename__ = "story_pages"

    id = Column(String(64), primary_key=True, default=_uuid)
    story_id = Column(String(64), ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)
    # Canonical address inside the story; ``id`` is the secondary lookup key.
    ordinal = Column(Integer, nullable=False)
    title = Column(String, nullable=True)
    content = Column(Text, nullable=False)
    page_type = Column(String(16), nullable=False, default="story")
    is_starting = Column(Boolean, default=False, nullable=False)
    is_ending = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=func.now())

    story = relationship("Story", back_populates="pages")
    choices = relationship(
        "StoryChoice",
        back_populates="source_page",
        foreign_keys="StoryChoice.from_page_id",
        order_by="StoryChoice.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("story_id", "ordinal", name="uix_story_page_ordinal"),
        CheckConstraint("ordinal >= 1", name="ck_story_pages_ordinal_positive"),
    )


class StoryChoice(Base):
    __tablename__ = "story_choices"

    id = Column(String(64), primary_key=True, default=_uuid)
    story_id = Column(String(64), ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)
    from_page_id = Column(String(64), ForeignKey("story_pages.id", ondelete="CASCADE"), nullable=False, index=True)
    # Destination by id and by ordinal; publish validation checks they agree.
    to_page_id = Column(String(64), ForeignKey("story_pages.id", ondelete="CASCADE"), nullable=False)
    target_ordinal = Column(Integer, nullable=False)
    text = Column(String, nullable=False)
    is_premium = Column(Boolean, default=False, nullable=False)
    cost = Column(Integer, default=0, nullable=False)
    # Authoring order within the source page
    position = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=func.now())

    source_page = relationship("StoryPage", back_populates="choices", foreign_keys=[from_page_id])

    __table_args__ = (
        CheckConstraint("cost >= 0", name="ck_story_choices_cost_non_negative"),
        CheckConstraint("cost = 0 OR is_premium", name="ck_story_choices_cost_requires_premium"),
    )


class ReadingProgress(Base):
    """Server-side position of an authenticated reader in one story."""

    __tablename__ = "reading_progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    story_id = Column(String(64), ForeignKey("stories.id", ondelete="CASCADE"), nullable=False)
    current_ordinal = Column(Integer, nullable=False, default=1)
    current_page_id = Column(String(64), ForeignKey("story_pages.id", ondelete="SET NULL"), nullable=True)
    is_bookmarked = Column(Boolean, default=False, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    pages_read = Column(Integer, default=0, nullable=False)
    choices_made = Column(Integer, default=0, nullable=False)
    last_read_at = Column(DateTime, default=func.now())
    created_at = Column(DateTime, default=func.now())

    story = relationship("Story", lazy="joined")

    __table_args__ = (UniqueConstraint("user_id", "story_id", name="uix_reading_progress_user_story"),)


class PurchasedPath(Base):
    """Permanent ownership of a premium choice. Never updated or deleted."""

    __tablename__ = "purchased_paths"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    story_id = Column(String(64), ForeignKey("stories.id", ondelete="CASCADE"), nullable=False)
    choice_id = Column(String(64), ForeignKey("story_choices.id", ondelete="CASCADE"), nullable=False)
    price_paid = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (UniqueConstraint("user_id", "choice_id", name="uix_purchased_path_user_choice"),)


class UserChoice(Base):
    """Append-only history of choices taken by authenticated readers."""

    __tablename__ = "user_choices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    story_id = Column(String(64), ForeignKey("stories.id", ondelete="CASCADE"), nullable=False)
    choice_id = Column(String(64), ForeignKey("story_choices.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, default=func.now())

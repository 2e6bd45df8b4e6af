from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Boolean, ForeignKey, Index, Table,
    DateTime, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from db.database import Base
from utils.datetime_utils import local_now


HABIT_FREQUENCIES = ("daily", "weekly")


habit_tags = Table(
    "habit_tags",
    Base.metadata,
    Column("habit_id", Integer, ForeignKey("habits.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(Text, unique=True, nullable=False)  # stored lower-cased
    password_hash = Column(Text, nullable=False)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=False)
    email_verified = Column(Boolean, nullable=False, default=False)
    verify_token = Column(Text, nullable=True)
    verify_token_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    habits = relationship("Habit", back_populates="user", cascade="all, delete-orphan")


class Tag(Base):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("name", "emoji", name="uq_tag_name_emoji"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    emoji = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=datetime.utcnow)

    habits = relationship("Habit", secondary=habit_tags, back_populates="tags")


class Habit(Base):
    __tablename__ = "habits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    frequency = Column(Text, nullable=False, default="daily")  # daily | weekly
    # Local wall-clock time, same convention as Progress.date
    created_at = Column(DateTime, default=local_now)
    updated_at = Column(DateTime, default=local_now, onupdate=local_now)

    user = relationship("User", back_populates="habits")
    tags = relationship("Tag", secondary=habit_tags, back_populates="habits", order_by="Tag.name")
    progress = relationship(
        "Progress",
        back_populates="habit",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Progress(Base):
    __tablename__ = "progress"

    id = Column(Integer, primary_key=True, autoincrement=True)
    habit_id = Column(Integer, ForeignKey("habits.id", ondelete="CASCADE"), nullable=False)
    date = Column(DateTime, nullable=False)  # naive local midnight
    status = Column(Text, nullable=False, default="done")
    created_at = Column(DateTime, default=local_now)

    habit = relationship("Habit", back_populates="progress")

    __table_args__ = (
        Index("uq_progress_habit_date", "habit_id", "date", unique=True),
        Index("ix_progress_date", "date"),
    )

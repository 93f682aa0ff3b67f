# oncall/database/database.py
"""
SQLAlchemy database setup and models for the versioned history ledger.
"""

import os
from datetime import datetime
from pathlib import Path

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/history.db")


def make_engine(url: str):
    if url.startswith("sqlite:///") and ":memory:" not in url and "mode=memory" not in url:
        Path(url.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class ScheduleVersion(Base):
    """Immutable snapshot of the full schedule, effective from a given date."""

    __tablename__ = "schedule_versions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    version_name = Column(String(50), nullable=False)
    effective_date = Column(Date, nullable=False, index=True)
    schedule_data = Column(JSON, nullable=False)
    content_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_by = Column(String(100), default="system")
    description = Column(Text)
    is_active = Column(Integer, default=1, nullable=False)  # 1=True, 0=False

    assignments = relationship("HistoricalAssignment", back_populates="version")

    def __repr__(self):
        return f"<ScheduleVersion(id={self.id}, name={self.version_name}, effective={self.effective_date})>"


class HistoricalAssignment(Base):
    """Frozen record of who was on call for one date and layer. Never updated."""

    __tablename__ = "historical_assignments"
    __table_args__ = (UniqueConstraint("date", "layer_key", name="uq_historical_date_layer"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    date = Column(Date, nullable=False, index=True)
    layer_key = Column(String(100), nullable=False)
    person = Column(String(100), nullable=False)
    version_id = Column(Integer, ForeignKey("schedule_versions.id"), nullable=False)
    override_id = Column(Integer, ForeignKey("monthly_overrides.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    version = relationship("ScheduleVersion", back_populates="assignments")

    def __repr__(self):
        return f"<HistoricalAssignment(date={self.date}, layer={self.layer_key}, person={self.person})>"


class MonthlyOverride(Base):
    """Override data for one calendar month ("YYYY-MM")."""

    __tablename__ = "monthly_overrides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    month = Column(String(7), unique=True, nullable=False, index=True)
    override_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SystemMetadata(Base):
    __tablename__ = "system_metadata"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


def create_tables(bind=None):
    """Create all database tables."""
    Base.metadata.create_all(bind=bind or engine)


"""
SQLAlchemy models for the clinical asset tables.

Table and column names match the portal database so the service can run
against it directly. On PostgreSQL the tables may live in a dedicated
schema, selected through the search path (DB_SCHEMA).
"""

from datetime import datetime

from sqlalchemy import (
    JSON, BigInteger, Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, Text,
    create_engine, event, text,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool

from asset_api.config import settings


Base = declarative_base()


class Account(Base):
    """A trial (sponsor account)."""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trial_name = Column(String(255), nullable=True)
    company_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class TrialContainer(Base):
    """Site or library that owns assets."""

    __tablename__ = "trial_containers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    identifier = Column(String(100), nullable=True)
    type = Column(String(50), nullable=False, default="Site")  # Site, Library
    country_code = Column(String(2), nullable=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)


class StudyArm(Base):
    __tablename__ = "study_arms"

    id = Column(Integer, primary_key=True, autoincrement=True)
    display_name = Column(String(255), nullable=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)


class StudySubject(Base):
    """Enrolled subject at a site."""

    __tablename__ = "study_subjects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    number = Column(String(100), nullable=False)
    active = Column(Boolean, default=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    site_id = Column(Integer, ForeignKey("trial_containers.id"), nullable=True)
    study_arm_id = Column(Integer, ForeignKey("study_arms.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    events = relationship("StudyEvent", back_populates="subject")


class StudyEventDefinition(Base):
    __tablename__ = "study_event_definitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    display_name = Column(String(255), nullable=True)


class StudyEvent(Base):
    """Visit of a subject."""

    __tablename__ = "study_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    identifier = Column(String(100), nullable=True)
    display_name = Column(String(255), nullable=True)
    date = Column(Date, nullable=True)
    status = Column(String(50), nullable=True)
    study_subject_id = Column(Integer, ForeignKey("study_subjects.id"), nullable=False)
    site_id = Column(Integer, ForeignKey("trial_containers.id"), nullable=True)
    study_event_definition_id = Column(Integer, ForeignKey("study_event_definitions.id"), nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    subject = relationship("StudySubject", back_populates="events")
    procedures = relationship("StudyProcedure", back_populates="event")


class StudyProcedureDefinition(Base):
    __tablename__ = "study_procedure_definitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    display_name = Column(String(255), nullable=True)


class StudyProcedure(Base):
    """Procedure performed during an event; assets attach here."""

    __tablename__ = "study_procedures"

    id = Column(Integer, primary_key=True, autoincrement=True)
    identifier = Column(String(100), nullable=True)
    display_name = Column(String(255), nullable=True)
    date = Column(Date, nullable=True)
    status = Column(String(50), nullable=True)
    locked = Column(Boolean, default=False)
    study_event_id = Column(Integer, ForeignKey("study_events.id"), nullable=False)
    study_procedure_definition_id = Column(Integer, ForeignKey("study_procedure_definitions.id"), nullable=True)
    evaluator_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    event = relationship("StudyEvent", back_populates="procedures")
    assets = relationship("Asset", back_populates="procedure")


class Asset(Base):
    """Uploaded media file."""

    __tablename__ = "assets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    filename = Column(String(500), nullable=False)
    filesize = Column(BigInteger, nullable=True)  # bytes
    processed = Column(Boolean, default=False)
    media_info = Column(JSON, nullable=True)  # probe output, duration in seconds
    s3_url = Column(String(1000), nullable=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    trial_container_id = Column(Integer, ForeignKey("trial_containers.id"), nullable=True)
    uploader_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    study_procedure_id = Column(Integer, ForeignKey("study_procedures.id"), nullable=True)
    soft_deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    procedure = relationship("StudyProcedure", back_populates="assets")


class AssetReview(Base):
    __tablename__ = "asset_reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed = Column(Boolean, nullable=True)
    review_date = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    comment = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)


# Indexes for hierarchy lookups and asset filters
Index("idx_trial_containers_account_id", TrialContainer.account_id)
Index("idx_study_subjects_site_id", StudySubject.site_id)
Index("idx_study_events_subject_id", StudyEvent.study_subject_id)
Index("idx_study_procedures_event_id", StudyProcedure.study_event_id)
Index("idx_assets_procedure_id", Asset.study_procedure_id)
Index("idx_assets_container_id", Asset.trial_container_id)
Index("idx_assets_created_at", Asset.created_at)
Index("idx_asset_reviews_asset_id", AssetReview.asset_id)
Index("idx_comments_asset_id", Comment.asset_id)


# Database engine and session factory
_engine = None
_SessionLocal = None


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def enable_unicode_lower(engine) -> None:
    """
    Replace SQLite's ASCII-only lower() with str.lower on every connection.

    Search predicates compare lower(column) against a term lower-cased in
    Python; PostgreSQL already folds non-ASCII letters in lower().
    """

    @event.listens_for(engine, "connect")
    def _register(dbapi_connection, connection_record):
        dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)


def get_engine():
    """Get or create database engine (pooled with auto-reconnect on PostgreSQL)."""
    global _engine
    if _engine is None:
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is not configured")
        if settings.is_sqlite:
            _engine = create_engine(
                settings.database_url,
                echo=settings.debug,
                connect_args={"check_same_thread": False},
            )
            enable_unicode_lower(_engine)
        else:
            _engine = create_engine(
                settings.database_url,
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_recycle=300,  # Recycle connections every 5 minutes
                pool_pre_ping=True,  # Test connection before using (auto-reconnect)
                echo=settings.debug,
                connect_args={
                    "keepalives": 1,
                    "keepalives_idle": 30,
                    "keepalives_interval": 10,
                    "keepalives_count": 5,
                }
            )
    return _engine


def get_session_factory():
    """Get or create session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine()
        )
    return _SessionLocal


def get_db() -> Session:
    """Get database session (dependency injection)."""
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        if settings.db_schema and not settings.is_sqlite:
            db.execute(text(f"SET search_path TO {settings.db_schema}"))
        yield db
    finally:
        db.close()


def init_schema():
    """Initialize database schema (create tables if not exist)."""
    engine = get_engine()

    with engine.begin() as conn:
        # Unqualified tables land in the first schema of the search path
        if settings.db_schema and not settings.is_sqlite:
            conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {settings.db_schema}"))
            conn.execute(text(f"SET search_path TO {settings.db_schema}"))
        Base.metadata.create_all(bind=conn)


def drop_schema():
    """Drop every asset table (use with caution)."""
    with get_engine().begin() as conn:
        if settings.db_schema and not settings.is_sqlite:
            conn.execute(text(f"SET search_path TO {settings.db_schema}"))
        Base.metadata.drop_all(bind=conn)

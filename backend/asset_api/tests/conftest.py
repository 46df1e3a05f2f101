"""
Shared fixtures for the API tests: an in-memory SQLite database seeded with
a small, fully known hierarchy, and a TestClient wired to it.

Seeded data:
    Trial A (Acme):       Site Berlin (DE, id 10), Site Boston (US, id 11), Library One (id 20)
    Trial B (Beta Pharma): Site Tokyo (JP, id 12)

    Subject 100 "001" @ Berlin (Placebo)
        Event 200 Baseline 2024-03-01 -> Procedure 300 Gait -> assets 1000, 1001 (+ deleted 1005)
        Event 201 Week 4   2024-03-29
    Subject 101 "002" @ Berlin
    Subject 102 "003" @ Boston
        Event 202 Baseline -> Procedure 301 Gait -> asset 1002

    Asset 1003 @ Tokyo, 1004 @ Library One, 1006 without container
"""

from datetime import date, datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from asset_api.db import (
    Account,
    Asset,
    AssetReview,
    Base,
    Comment,
    StudyArm,
    StudyEvent,
    StudyEventDefinition,
    StudyProcedure,
    StudyProcedureDefinition,
    StudySubject,
    TrialContainer,
    User,
    enable_unicode_lower,
    get_db,
)
from asset_api.main import app

MB = 1024 * 1024


def seed(db):
    db.add_all([
        Account(id=1, trial_name="Trial A", company_name="Acme"),
        Account(id=2, trial_name="Trial B", company_name="Beta Pharma"),
        User(id=1, email="rita@example.com", first_name="Rita", last_name="Reviewer"),
        User(id=2, email="uma@example.com", first_name="Uma", last_name="Uploader"),
        User(id=3, email="evan@example.com", first_name="Evan", last_name="Evaluator"),
        TrialContainer(id=10, name="Site Berlin", identifier="S010", type="Site", country_code="DE", account_id=1),
        TrialContainer(id=11, name="Site Boston", identifier="S011", type="Site", country_code="US", account_id=1),
        TrialContainer(id=12, name="Site Tokyo", identifier="S012", type="Site", country_code="JP", account_id=2),
        TrialContainer(id=20, name="Library One", type="Library", account_id=1),
        StudyArm(id=1, display_name="Placebo", account_id=1),
        StudyEventDefinition(id=1, display_name="Baseline"),
        StudyProcedureDefinition(id=1, display_name="Gait"),
    ])
    db.flush()

    db.add_all([
        StudySubject(id=100, number="001", account_id=1, site_id=10, study_arm_id=1),
        StudySubject(id=101, number="002", account_id=1, site_id=10),
        StudySubject(id=102, number="003", account_id=1, site_id=11),
    ])
    db.flush()

    db.add_all([
        StudyEvent(id=200, display_name="Baseline", date=date(2024, 3, 1), status="completed",
                   study_subject_id=100, site_id=10, study_event_definition_id=1),
        StudyEvent(id=201, display_name="Week 4", date=date(2024, 3, 29), status="scheduled",
                   study_subject_id=100, site_id=10),
        StudyEvent(id=202, display_name="Baseline", date=date(2024, 3, 4), status="completed",
                   study_subject_id=102, site_id=11, study_event_definition_id=1),
    ])
    db.flush()

    db.add_all([
        StudyProcedure(id=300, display_name="Gait", date=date(2024, 3, 1), status="completed", locked=False,
                       study_event_id=200, study_procedure_definition_id=1, evaluator_id=3),
        StudyProcedure(id=301, display_name="Gait", date=date(2024, 3, 4), status="completed", locked=True,
                       study_event_id=202, study_procedure_definition_id=1, evaluator_id=3),
    ])
    db.flush()

    db.add_all([
        Asset(id=1000, filename="baseline_gait.mp4", filesize=10 * MB, processed=True,
              media_info={"duration": 75}, s3_url="https://assets.example.com/1000.mp4",
              account_id=1, trial_container_id=10, uploader_id=2, study_procedure_id=300,
              created_at=datetime(2024, 3, 10, 23, 59, 59)),
        Asset(id=1001, filename="week4_gait.mp4", filesize=20 * MB, processed=False,
              account_id=1, trial_container_id=10, uploader_id=2, study_procedure_id=300,
              created_at=datetime(2024, 3, 11, 0, 0, 0)),
        Asset(id=1002, filename="boston_gait.mp4", filesize=5 * MB, processed=None,
              account_id=1, trial_container_id=11, uploader_id=2, study_procedure_id=301,
              created_at=datetime(2024, 3, 5, 12, 0, 0)),
        Asset(id=1003, filename="tokyo_intake.mp4", filesize=3 * MB, processed=True,
              account_id=2, trial_container_id=12, created_at=datetime(2024, 2, 1, 9, 0, 0)),
        Asset(id=1004, filename="library_clip.mp4", filesize=1 * MB, processed=True,
              account_id=1, trial_container_id=20, created_at=datetime(2024, 1, 15, 9, 0, 0)),
        Asset(id=1005, filename="deleted.mp4", account_id=1, trial_container_id=10, study_procedure_id=300,
              created_at=datetime(2024, 3, 20), soft_deleted_at=datetime(2024, 3, 21)),
        Asset(id=1006, filename="orphan.mp4", processed=False, account_id=1,
              created_at=datetime(2024, 1, 1, 9, 0, 0)),
    ])
    db.flush()

    db.add_all([
        AssetReview(asset_id=1000, user_id=1, reviewed=True, review_date=datetime(2024, 3, 12, 10, 0)),
        AssetReview(asset_id=1001, user_id=1, reviewed=False),
        Comment(id=1, asset_id=1000, author_id=1, comment="Looks good", created_at=datetime(2024, 3, 12, 10, 0)),
        Comment(id=2, asset_id=1000, author_id=1, comment="Check audio", created_at=datetime(2024, 3, 12, 11, 0)),
        Comment(id=3, asset_id=1000, author_id=1, comment="Removed", created_at=datetime(2024, 3, 12, 12, 0),
                deleted_at=datetime(2024, 3, 13)),
    ])
    db.commit()


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_unicode_lower(engine)
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db = TestingSession()
    seed(db)
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)

"""
Demo data for local development.

Builds a small but complete hierarchy: one trial, a few sites in different
countries, one library, subjects with events and procedures, and assets
spread over sites and the library with a mix of review and processing
states.
"""

import logging
import random
from datetime import date, datetime, timedelta
from typing import Dict

from sqlalchemy.orm import Session

from asset_api.db import (
    Account,
    Asset,
    AssetReview,
    Comment,
    StudyArm,
    StudyEvent,
    StudyEventDefinition,
    StudyProcedure,
    StudyProcedureDefinition,
    StudySubject,
    TrialContainer,
    User,
)

logger = logging.getLogger(__name__)

SITE_COUNTRIES = ["US", "DE", "JP", "BR", "GB"]
EVENT_NAMES = ["Screening", "Baseline", "Week 4", "Week 12"]
PROCEDURE_NAMES = ["Gait Assessment", "Speech Sample", "Motor Exam"]
ARM_NAMES = ["Placebo", "Treatment"]


def seed_demo_hierarchy(
    db: Session,
    sites: int = 3,
    subjects_per_site: int = 4,
    assets_per_procedure: int = 2,
    seed: int = 7,
) -> Dict[str, int]:
    """
    Insert demo rows and commit.

    Returns:
        Row counts per created entity.
    """
    rng = random.Random(seed)
    start = datetime(2024, 1, 8, 9, 0, 0)

    trial = Account(trial_name="Demo Trial", company_name="Demo Sponsor")
    reviewer = User(email="reviewer@example.com", first_name="Rita", last_name="Reviewer")
    evaluator = User(email="evaluator@example.com", first_name="Evan", last_name="Evaluator")
    uploader = User(email="uploader@example.com", first_name="Uma", last_name="Uploader")
    db.add_all([trial, reviewer, evaluator, uploader])
    db.flush()

    arms = [StudyArm(display_name=name, account_id=trial.id) for name in ARM_NAMES]
    event_defs = [StudyEventDefinition(display_name=name) for name in EVENT_NAMES]
    procedure_defs = [StudyProcedureDefinition(display_name=name) for name in PROCEDURE_NAMES]
    library = TrialContainer(name="Training Library", type="Library", account_id=trial.id)
    db.add_all(arms + event_defs + procedure_defs + [library])
    db.flush()

    counts = {"sites": 0, "subjects": 0, "events": 0, "procedures": 0, "assets": 0}
    asset_number = 0

    for site_index in range(sites):
        country = SITE_COUNTRIES[site_index % len(SITE_COUNTRIES)]
        site = TrialContainer(
            name=f"Site {site_index + 1:03d}",
            identifier=f"S{site_index + 1:03d}",
            type="Site",
            country_code=country,
            account_id=trial.id,
        )
        db.add(site)
        db.flush()
        counts["sites"] += 1

        for subject_index in range(subjects_per_site):
            subject = StudySubject(
                number=f"{site_index + 1:02d}-{subject_index + 1:03d}",
                active=True,
                account_id=trial.id,
                site_id=site.id,
                study_arm_id=arms[subject_index % len(arms)].id,
            )
            db.add(subject)
            db.flush()
            counts["subjects"] += 1

            for event_index, event_def in enumerate(event_defs):
                event_date = date(2024, 1, 8) + timedelta(weeks=4 * event_index)
                event = StudyEvent(
                    display_name=event_def.display_name,
                    date=event_date,
                    status="completed",
                    study_subject_id=subject.id,
                    site_id=site.id,
                    study_event_definition_id=event_def.id,
                )
                db.add(event)
                db.flush()
                counts["events"] += 1

                for procedure_def in procedure_defs:
                    procedure = StudyProcedure(
                        display_name=procedure_def.display_name,
                        date=event_date,
                        status="completed",
                        study_event_id=event.id,
                        study_procedure_definition_id=procedure_def.id,
                        evaluator_id=evaluator.id,
                    )
                    db.add(procedure)
                    db.flush()
                    counts["procedures"] += 1

                    for _ in range(assets_per_procedure):
                        asset_number += 1
                        asset = Asset(
                            filename=f"{subject.number}_{procedure_def.display_name.lower().replace(' ', '_')}"
                                     f"_{asset_number}.mp4",
                            filesize=rng.randint(5, 900) * 1024 * 1024,
                            processed=rng.random() < 0.8,
                            media_info={"duration": rng.randint(30, 4000)},
                            s3_url=f"https://assets.example.com/{asset_number}.mp4",
                            account_id=trial.id,
                            trial_container_id=site.id,
                            uploader_id=uploader.id,
                            study_procedure_id=procedure.id,
                            created_at=start + timedelta(hours=6 * asset_number),
                        )
                        db.add(asset)
                        db.flush()
                        counts["assets"] += 1

                        roll = rng.random()
                        if roll < 0.5:
                            db.add(AssetReview(
                                asset_id=asset.id,
                                user_id=reviewer.id,
                                reviewed=True,
                                review_date=asset.created_at + timedelta(days=2),
                            ))
                        elif roll < 0.7:
                            db.add(AssetReview(asset_id=asset.id, user_id=reviewer.id, reviewed=False))
                        if rng.random() < 0.2:
                            db.add(Comment(asset_id=asset.id, author_id=reviewer.id, comment="Audio is clipped"))

    for index in range(assets_per_procedure * 2):
        asset_number += 1
        db.add(Asset(
            filename=f"training_clip_{index + 1}.mp4",
            filesize=rng.randint(5, 300) * 1024 * 1024,
            processed=True,
            media_info={"duration": rng.randint(30, 600)},
            account_id=trial.id,
            trial_container_id=library.id,
            uploader_id=uploader.id,
            created_at=start + timedelta(hours=6 * asset_number),
        ))
        counts["assets"] += 1

    db.commit()
    logger.info(f"Seeded demo data: {counts}")
    return counts

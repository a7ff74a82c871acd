"""
Report submission and the match run that goes with it.

submit_report() uploads photos, scans every active report of the opposite
kind, stores the new report and writes one "match" notification per
confirmed match, addressed to the owner of the other report.

The scan and the insert are not atomic against a concurrent submission of
the opposite kind: two reports submitted at the same moment may miss each
other.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.models.notification import Notification
from app.models.report import Report
from app.models.user import User
from app.services.errors import (
    AuthRequiredError,
    ForbiddenError,
    InvalidStatusTransition,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.services.matching import MatchCandidate, score
from app.utils.form_validator import ValidatedCreateReport

logger = logging.getLogger(__name__)

MAX_PHOTOS = 5

OPPOSITE_KIND = {"lost": "found", "found": "lost"}

# (raw bytes, original filename)
Photo = Tuple[bytes, str]


@dataclass
class SubmissionResult:
    report: Report
    matches: List[MatchCandidate]


def find_matches(session: Session, report: Report) -> List[MatchCandidate]:
    candidates = session.exec(
        select(Report)
        .where(Report.kind == OPPOSITE_KIND[report.kind])
        .where(Report.status == "active")
        .where(Report.user_id != report.user_id)
        .where(Report.id != report.id)
    ).all()

    scored = [score(report, candidate) for candidate in candidates]
    matches = [m for m in scored if m.is_match]

    logger.info(
        "Match run for %s report %s: %d candidates, %d matches",
        report.kind, report.id, len(candidates), len(matches),
    )
    return matches


def build_match_notification(report: Report, other: Report) -> Notification:
    lost, found = (report, other) if report.kind == "lost" else (other, report)

    if other.kind == "lost":
        message = f"Someone found an item that may be your lost '{other.item_name}'. Check it out!"
    else:
        message = f"Someone is looking for an item like the '{other.item_name}' you found."

    return Notification(
        user_id=other.user_id,
        type="match",
        title="Potential Match Found",
        message=message,
        lost_report_id=lost.id,
        found_report_id=found.id,
    )


def notification_exists(session: Session, notification: Notification) -> bool:
    existing = session.exec(
        select(Notification.id)
        .where(Notification.user_id == notification.user_id)
        .where(Notification.type == notification.type)
        .where(Notification.lost_report_id == notification.lost_report_id)
        .where(Notification.found_report_id == notification.found_report_id)
    ).first()

    return existing is not None


def submit_report(
    session: Session,
    owner: Optional[User],
    form: ValidatedCreateReport,
    photos: List[Photo],
    uploader: Callable[..., dict],
    remover: Optional[Callable[[str], None]] = None,
) -> SubmissionResult:
    if owner is None:
        raise AuthRequiredError("Sign in to submit a report")

    if not photos:
        raise ValidationError("Upload at least one photo")

    if len(photos) > MAX_PHOTOS:
        raise ValidationError(f"At most {MAX_PHOTOS} photos per report")

    # uploads come first; an UploadError leaves the database untouched
    photo_urls = []
    try:
        for raw_bytes, filename in photos:
            photo_urls.append(uploader(raw_bytes, filename)["url"])
    except Exception:
        _remove_photos(photo_urls, remover)
        raise

    report = Report(
        user_id=owner.id,
        kind=form.kind,
        category=form.category,
        item_name=form.item_name,
        description=form.description,
        event_date=form.event_date,
        contact_details=form.contact_details,
        photo_urls=photo_urls,
        latitude=form.latitude,
        longitude=form.longitude,
        status="active",
    )

    try:
        matches = find_matches(session, report)
        others = {
            r.id: r
            for r in session.exec(
                select(Report).where(Report.id.in_([m.report_b_id for m in matches]))
            ).all()
        } if matches else {}

        session.add(report)

        for match in matches:
            notification = build_match_notification(report, others[match.report_b_id])
            if not notification_exists(session, notification):
                session.add(notification)

        # report and notifications become visible together
        session.commit()
        session.refresh(report)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Report submission failed: %s", e, exc_info=True)
        _remove_photos(photo_urls, remover)
        raise PersistenceError("Could not save the report")

    return SubmissionResult(report=report, matches=matches)


def _remove_photos(urls: List[str], remover: Optional[Callable[[str], None]]):
    if remover is None:
        return

    for url in urls:
        remover(url)


def get_report(session: Session, report_id) -> Report:
    report = session.get(Report, _as_uuid(report_id))
    if not report:
        raise NotFoundError("Report not found")

    return report


def list_active(session: Session, kind: Optional[str] = None) -> List[Report]:
    query = select(Report).where(Report.status == "active").order_by(Report.created_at.desc())

    if kind is not None:
        if kind not in OPPOSITE_KIND:
            raise ValidationError("Invalid report kind")
        query = query.where(Report.kind == kind)

    return session.exec(query).all()


def list_for_owner(session: Session, user_id: int) -> List[Report]:
    return session.exec(
        select(Report)
        .where(Report.user_id == user_id)
        .order_by(Report.created_at.desc())
    ).all()


def transition_status(session: Session, report_id, user: User, new_status: str) -> Report:
    """active -> resolved on reunification, active -> closed on withdrawal."""
    if new_status not in ("resolved", "closed"):
        raise ValidationError("Invalid report status")

    report = get_report(session, report_id)

    if report.user_id != user.id:
        raise ForbiddenError("Unauthorized to change this report")

    if report.status != "active":
        raise InvalidStatusTransition(f"Report is already {report.status}")

    report.status = new_status

    try:
        session.add(report)
        session.commit()
        session.refresh(report)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Status update failed for report %s: %s", report.id, e)
        raise PersistenceError("Could not update the report")

    return report


def _as_uuid(value) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value

    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFoundError("Report not found")

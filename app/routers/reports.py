from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlmodel import Session

from app.db.db import get_session
from app.models.user import User
from app.services import reports as report_service
from app.utils.auth_helper import get_current_db_user
from app.utils.form_validator import validate_create_report_form
from app.utils.s3_service import delete_s3_object, upload_photo


router = APIRouter()


def get_uploader():
    return upload_photo


def get_remover():
    return delete_s3_object


@router.post("/create")
async def create_report(
    kind: str = Form(...),
    item_name: str = Form(...),
    category: str = Form(...),
    description: str = Form(...),
    event_date: str = Form(...),
    contact_details: str = Form(...),
    latitude: float = Form(...),
    longitude: float = Form(...),
    photos: List[UploadFile] = File(...),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
    uploader=Depends(get_uploader),
    remover=Depends(get_remover),
):
    form = validate_create_report_form(
        kind=kind,
        item_name=item_name,
        category=category,
        description=description,
        event_date=event_date,
        contact_details=contact_details,
        latitude=latitude,
        longitude=longitude,
    )

    # read images into memory
    raw_photos = [(await photo.read(), photo.filename) for photo in photos]

    result = report_service.submit_report(session, user, form, raw_photos, uploader, remover)

    return {
        "report": result.report,
        "matches": [m.model_dump(mode="json") for m in result.matches],
    }


@router.get("/all")
async def get_active_reports(
    kind: Optional[str] = None,
    session: Session = Depends(get_session),
):
    return {"reports": report_service.list_active(session, kind)}


@router.get("/mine")
async def get_my_reports(
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
):
    reports = report_service.list_for_owner(session, user.id)

    # Separate by kind
    return {
        "lost_reports": [r for r in reports if r.kind == "lost"],
        "found_reports": [r for r in reports if r.kind == "found"],
    }


@router.get("/{report_id}")
async def get_report(
    report_id: str,
    session: Session = Depends(get_session),
):
    return report_service.get_report(session, report_id)


@router.post("/{report_id}/resolve")
async def resolve_report(
    report_id: str,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
):
    report = report_service.transition_status(session, report_id, user, "resolved")
    return {"ok": True, "status": report.status}


@router.post("/{report_id}/close")
async def close_report(
    report_id: str,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_db_user),
):
    report = report_service.transition_status(session, report_id, user, "closed")
    return {"ok": True, "status": report.status}

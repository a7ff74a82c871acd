from datetime import date
from typing import Literal
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from app.services.errors import ValidationError


class ValidatedCreateReport(BaseModel):
    kind: Literal["lost", "found"]
    item_name: str = Field(min_length=1, max_length=60)
    category: Literal[
        "Electronics",
        "Gadgets",
        "Clothing",
        "Documents",
        "Wallet",
        "Keys",
        "Other",
    ]
    description: str = Field(min_length=1, max_length=500)
    event_date: date
    contact_details: str = Field(min_length=1, max_length=120)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


def validate_create_report_form(
    kind: str,
    item_name: str,
    category: str,
    description: str,
    event_date: str,
    contact_details: str,
    latitude: float,
    longitude: float,
) -> ValidatedCreateReport:
    try:
        parsed_date = date.fromisoformat(event_date.strip())
    except (AttributeError, ValueError):
        raise ValidationError("Date not parseable, expected YYYY-MM-DD")

    try:
        return ValidatedCreateReport(
            kind=kind,
            item_name=item_name.strip(),
            category=category,
            description=description.strip(),
            event_date=parsed_date,
            contact_details=contact_details.strip(),
            latitude=latitude,
            longitude=longitude,
        )
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(loc) for loc in first["loc"])
        raise ValidationError(f"Invalid {field}: {first['msg']}")

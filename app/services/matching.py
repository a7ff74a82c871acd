"""
Match scorer: decides whether a new report corresponds to a report of the
opposite kind.

A pair matches when the item names overlap and either the categories are
identical or the two locations are less than a kilometer apart.
"""

import uuid
from pydantic import BaseModel

from app.models.report import Report
from app.utils.geo import distance_between

NEARBY_KM = 1.0


class MatchCandidate(BaseModel):
    report_a_id: uuid.UUID
    report_b_id: uuid.UUID
    name_similarity: bool
    category_match: bool
    distance_km: float
    is_match: bool


def names_overlap(name_a: str, name_b: str) -> bool:
    a = (name_a or "").strip().lower()
    b = (name_b or "").strip().lower()

    # "" is a substring of everything
    if not a or not b:
        return False

    return a in b or b in a


def score(new_report: Report, candidate: Report) -> MatchCandidate:
    name_similarity = names_overlap(new_report.item_name, candidate.item_name)
    category_match = new_report.category == candidate.category
    distance_km = distance_between(new_report.location, candidate.location)

    is_match = (name_similarity and category_match) or (name_similarity and distance_km < NEARBY_KM)

    return MatchCandidate(
        report_a_id=new_report.id,
        report_b_id=candidate.id,
        name_similarity=name_similarity,
        category_match=category_match,
        distance_km=distance_km,
        is_match=is_match,
    )


def is_match(report_a: Report, report_b: Report) -> bool:
    return score(report_a, report_b).is_match

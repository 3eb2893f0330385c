"""
Deterministic coach ranking against an event's requirements.

    score = 3 * |specialties & required_skills|
          + 2 * has_availability_overlap
          + average of past ratings (0 without history)
          + 1 * same location

No I/O here; ``MatchingService`` adapts directory contacts into candidates.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

SKILL_WEIGHT = 3.0
AVAILABILITY_WEIGHT = 2.0
LOCATION_WEIGHT = 1.0

@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime

@dataclass
class Candidate:
    id: uuid.UUID
    specialties: set[str] = field(default_factory=set)
    availability: list[Window] = field(default_factory=list)
    ratings: list[float] = field(default_factory=list)
    location: str | None = None
    display_name: str = ""

@dataclass
class EventRequirements:
    required_skills: set[str]
    start: datetime
    end: datetime
    location: str | None = None

@dataclass(frozen=True)
class RankedCandidate:
    candidate: Candidate
    score: float

def _norm(values: Iterable[str]) -> set[str]:
    return {v.strip().lower() for v in values if v and v.strip()}

def has_availability_overlap(candidate: Candidate, event: EventRequirements) -> bool:
    # closed intervals: touching endpoints count
    return any(w.start <= event.end and w.end >= event.start for w in candidate.availability)

def average_rating(candidate: Candidate) -> float:
    if not candidate.ratings:
        return 0.0
    return sum(candidate.ratings) / len(candidate.ratings)

def same_location(candidate: Candidate, event: EventRequirements) -> bool:
    if not candidate.location or not event.location:
        return False
    return candidate.location.strip().lower() == event.location.strip().lower()

def score(candidate: Candidate, event: EventRequirements) -> float:
    skills = len(_norm(candidate.specialties) & _norm(event.required_skills))
    return (
        SKILL_WEIGHT * skills
        + AVAILABILITY_WEIGHT * has_availability_overlap(candidate, event)
        + average_rating(candidate)
        + LOCATION_WEIGHT * same_location(candidate, event)
    )

def rank(candidates: Sequence[Candidate], event: EventRequirements, limit: int | None = None) -> list[RankedCandidate]:
    ranked = sorted((RankedCandidate(c, score(c, event)) for c in candidates), key=lambda r: (-r.score, str(r.candidate.id)))
    return ranked[:limit] if limit else ranked

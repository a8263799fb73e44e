from __future__ import annotations

from dataclasses import fields
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import threading
import uuid

from bitcoinlatte.geo import distance_km
from bitcoinlatte.models import (
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    Shop,
    ShopRecord,
    Submission,
)

logger = logging.getLogger(__name__)

EDITABLE_SHOP_FIELDS = (
    "name",
    "address",
    "latitude",
    "longitude",
    "crypto_accepted",
    "description",
    "website",
    "phone",
    "hours",
    "approved",
)


class NotFoundError(LookupError):
    pass


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _known_fields(cls, payload: dict[str, object]) -> dict[str, object]:
    names = {item.name for item in fields(cls)}
    return {key: value for key, value in payload.items() if key in names}


class ShopStore:
    """Approved shops and pending submissions kept in one JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> tuple[list[ShopRecord], list[Submission]]:
        if not self.path.exists():
            return [], []

        payload = json.loads(self.path.read_text(encoding="utf-8"))
        shops = [ShopRecord(**_known_fields(ShopRecord, item)) for item in payload.get("shops", [])]
        submissions = [Submission(**_known_fields(Submission, item)) for item in payload.get("submissions", [])]
        return shops, submissions

    def _save(self, shops: list[ShopRecord], submissions: list[Submission]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "shops": [shop.to_dict() for shop in shops],
            "submissions": [submission.to_dict() for submission in submissions],
        }
        self.path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    # Shops

    def approved_shops(self, crypto: str | None = None) -> list[ShopRecord]:
        shops, _ = self._load()
        approved = [shop for shop in shops if shop.approved]
        if crypto:
            approved = [shop for shop in approved if crypto in shop.crypto_accepted]
        return sorted(approved, key=lambda value: value.created_at, reverse=True)

    def nearby(self, lat: float, lng: float, radius_km: float) -> list[Shop]:
        """Approved shops within ``radius_km`` of (lat, lng), nearest first."""
        shops, _ = self._load()
        found: list[Shop] = []
        for record in shops:
            if not record.approved:
                continue
            distance = distance_km(lat, lng, record.latitude, record.longitude)
            if distance <= radius_km:
                found.append(record.to_shop(distance_km=round(distance, 3)))
        return sorted(found, key=lambda value: value.distance_km)

    def get_shop(self, shop_id: str) -> ShopRecord:
        shops, _ = self._load()
        for shop in shops:
            if shop.id == shop_id:
                return shop
        raise NotFoundError(f"Shop {shop_id} not found")

    def add_shop(self, payload: dict[str, object], approved_by: str | None = None) -> ShopRecord:
        values = _known_fields(ShopRecord, payload)
        values.update(id=_new_id(), approved=True, approved_by=approved_by, created_at=_now())
        record = ShopRecord(**values)
        with self._lock:
            shops, submissions = self._load()
            shops.append(record)
            self._save(shops, submissions)
        logger.info(f"Added shop {record.id} ({record.name})")
        return record

    def update_shop(self, shop_id: str, changes: dict[str, object]) -> ShopRecord:
        with self._lock:
            shops, submissions = self._load()
            for shop in shops:
                if shop.id != shop_id:
                    continue
                for key, value in changes.items():
                    if key in EDITABLE_SHOP_FIELDS:
                        setattr(shop, key, value)
                self._save(shops, submissions)
                return shop
        raise NotFoundError(f"Shop {shop_id} not found")

    def delete_shop(self, shop_id: str) -> None:
        with self._lock:
            shops, submissions = self._load()
            remaining = [shop for shop in shops if shop.id != shop_id]
            if len(remaining) == len(shops):
                raise NotFoundError(f"Shop {shop_id} not found")
            self._save(remaining, submissions)
        logger.info(f"Deleted shop {shop_id}")

    # Submissions

    def list_submissions(self, status: str | None = None, submitted_by: str | None = None) -> list[Submission]:
        _, submissions = self._load()
        if submitted_by is not None:
            submissions = [item for item in submissions if item.submitted_by == submitted_by]
        if status:
            submissions = [item for item in submissions if item.status == status]
        return sorted(submissions, key=lambda value: value.created_at, reverse=True)

    def add_submission(self, payload: dict[str, object], submitted_by: str | None = None) -> Submission:
        values = _known_fields(Submission, payload)
        values.update(
            id=_new_id(),
            status=STATUS_PENDING,
            submitted_by=submitted_by,
            reviewed_by=None,
            reviewed_at=None,
            review_notes=None,
            created_at=_now(),
        )
        submission = Submission(**values)
        with self._lock:
            shops, submissions = self._load()
            submissions.append(submission)
            self._save(shops, submissions)
        logger.info(f"Received submission {submission.id} ({submission.name})")
        return submission

    def approve_submission(self, submission_id: str, reviewer: str, notes: str | None = None) -> ShopRecord:
        with self._lock:
            shops, submissions = self._load()
            submission = _find_submission(submissions, submission_id)
            record = ShopRecord(
                id=_new_id(),
                name=submission.name,
                address=submission.address,
                latitude=submission.latitude,
                longitude=submission.longitude,
                crypto_accepted=list(submission.crypto_accepted),
                description=submission.description,
                website=submission.website,
                phone=submission.phone,
                hours=submission.hours,
                approved=True,
                submitted_by=submission.submitted_by,
                approved_by=reviewer,
                created_at=_now(),
            )
            shops.append(record)
            _mark_reviewed(submission, STATUS_APPROVED, reviewer, notes)
            self._save(shops, submissions)
        logger.info(f"Approved submission {submission_id} as shop {record.id}")
        return record

    def reject_submission(self, submission_id: str, reviewer: str, notes: str | None = None) -> Submission:
        with self._lock:
            shops, submissions = self._load()
            submission = _find_submission(submissions, submission_id)
            _mark_reviewed(submission, STATUS_REJECTED, reviewer, notes)
            self._save(shops, submissions)
        logger.info(f"Rejected submission {submission_id}")
        return submission


def _find_submission(submissions: list[Submission], submission_id: str) -> Submission:
    for submission in submissions:
        if submission.id == submission_id:
            return submission
    raise NotFoundError(f"Submission {submission_id} not found")


def _mark_reviewed(submission: Submission, status: str, reviewer: str, notes: str | None) -> None:
    submission.status = status
    submission.reviewed_by = reviewer
    submission.reviewed_at = _now()
    submission.review_notes = notes

# techcare/repositories/mongo.py
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from ..schemas.booking import Booking
from ..schemas.technician import ApprovalStatus, Technician
from .base import (
    BookingFilter,
    BookingRepository,
    CatalogLookup,
    TechnicianDirectory,
    TechnicianFilter,
    directory_order,
    matches_technician_filter,
    run_guarded,
)

logger = logging.getLogger(__name__)


def _doc_to_dict(doc: Dict[str, Any]) -> Dict[str, Any]:
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def _oid_or_none(value: Optional[str]) -> Optional[ObjectId]:
    if not value or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def booking_query(filters: BookingFilter) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if filters.customer_id:
        query["customer_id"] = filters.customer_id
    if filters.technician_id:
        query["technician_id"] = filters.technician_id
    if filters.statuses:
        query["status"] = {"$in": [s.value for s in filters.statuses]}
    if filters.category:
        query["category"] = filters.category.value
    if filters.search:
        pattern = {"$regex": re.escape(filters.search), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"description": pattern}]
    if filters.start_date or filters.end_date:
        created: Dict[str, Any] = {}
        if filters.start_date:
            created["$gte"] = filters.start_date
        if filters.end_date:
            created["$lte"] = filters.end_date
        query["created_at"] = created
    return query


class MongoBookingRepository(BookingRepository):
    def __init__(self, db: AsyncIOMotorDatabase, *, timeout: float, read_retries: int):
        self._col = db.bookings
        self._timeout = timeout
        self._retries = read_retries

    async def create(self, data: Dict[str, Any]) -> Booking:
        doc = dict(data)
        res = await run_guarded("create", lambda: self._col.insert_one(doc), timeout=self._timeout)
        doc["_id"] = res.inserted_id
        return Booking.model_validate(_doc_to_dict(doc))

    async def get_by_id(self, booking_id: str) -> Optional[Booking]:
        oid = _oid_or_none(booking_id)
        if oid is None:
            return None
        doc = await run_guarded(
            "get_by_id",
            lambda: self._col.find_one({"_id": oid}),
            timeout=self._timeout,
            retries=self._retries,
        )
        return Booking.model_validate(_doc_to_dict(doc)) if doc else None

    async def conditional_update(
        self, booking_id: str, expected: Dict[str, Any], changes: Dict[str, Any]
    ) -> Optional[Booking]:
        oid = _oid_or_none(booking_id)
        if oid is None:
            return None
        # the pre-image is part of the filter: zero matches means someone else won
        query = {"_id": oid, **expected}
        doc = await run_guarded(
            "conditional_update",
            lambda: self._col.find_one_and_update(
                query, {"$set": changes}, return_document=ReturnDocument.AFTER
            ),
            timeout=self._timeout,
        )
        return Booking.model_validate(_doc_to_dict(doc)) if doc else None

    async def list(
        self, filters: BookingFilter, *, skip: int = 0, limit: Optional[int] = 10
    ) -> Tuple[List[Booking], int]:
        query = booking_query(filters)

        async def _page():
            cursor = self._col.find(query).sort([("created_at", -1), ("_id", -1)]).skip(skip)
            if limit is not None:
                cursor = cursor.limit(limit)
            docs = await cursor.to_list(limit)
            total = await self._col.count_documents(query)
            return docs, total

        docs, total = await run_guarded("list", _page, timeout=self._timeout, retries=self._retries)
        return [Booking.model_validate(_doc_to_dict(d)) for d in docs], total


class MongoTechnicianDirectory(TechnicianDirectory):
    """
    Joins the ``technicians`` collection with ``users`` (owned by the auth
    collaborator) to expose name, phone and the account's active flag.
    """

    def __init__(self, db: AsyncIOMotorDatabase, *, timeout: float, read_retries: int):
        self._technicians = db.technicians
        self._users = db.users
        self._timeout = timeout
        self._retries = read_retries

    async def _users_by_id(self, user_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        oids = [oid for oid in (_oid_or_none(u) for u in user_ids) if oid is not None]
        if not oids:
            return {}
        docs = await run_guarded(
            "users",
            lambda: self._users.find({"_id": {"$in": oids}}).to_list(len(oids)),
            timeout=self._timeout,
            retries=self._retries,
        )
        return {str(d["_id"]): d for d in docs}

    @staticmethod
    def _merge(doc: Dict[str, Any], user: Optional[Dict[str, Any]]) -> Technician:
        d = _doc_to_dict(doc)
        user = user or {}
        d.setdefault("full_name", user.get("full_name"))
        d.setdefault("phone", user.get("phone_number"))
        d["is_active"] = bool(user.get("is_active", True))
        return Technician.model_validate(d)

    async def get_by_user_id(self, user_id: str) -> Optional[Technician]:
        doc = await run_guarded(
            "get_technician",
            lambda: self._technicians.find_one({"user_id": user_id}),
            timeout=self._timeout,
            retries=self._retries,
        )
        if not doc:
            return None
        users = await self._users_by_id([user_id])
        return self._merge(doc, users.get(user_id))

    async def list(
        self, filters: TechnicianFilter, *, skip: int = 0, limit: Optional[int] = 10
    ) -> Tuple[List[Technician], int]:
        query: Dict[str, Any] = {"approval_status": ApprovalStatus.APPROVED.value}
        if filters.is_available is not None:
            query["is_available"] = filters.is_available
        rate: Dict[str, Any] = {}
        if filters.min_rate is not None:
            rate["$gte"] = filters.min_rate
        if filters.max_rate is not None:
            rate["$lte"] = filters.max_rate
        if rate:
            query["rate"] = rate
        docs = await run_guarded(
            "list_technicians",
            lambda: self._technicians.find(query).to_list(None),
            timeout=self._timeout,
            retries=self._retries,
        )
        # name and the active flag live on the user document
        users = await self._users_by_id([d["user_id"] for d in docs])
        found = sorted(
            (t for t in (self._merge(d, users.get(d["user_id"])) for d in docs)
             if matches_technician_filter(t, filters)),
            key=directory_order,
        )
        page = found[skip:] if limit is None else found[skip:skip + limit]
        return page, len(found)

    async def list_eligible(self, service_type: Optional[str] = None) -> List[Technician]:
        query: Dict[str, Any] = {
            "approval_status": ApprovalStatus.APPROVED.value,
            "is_available": True,
            "latitude": {"$ne": None},
            "longitude": {"$ne": None},
        }
        if service_type:
            query["specialization"] = {"$regex": re.escape(service_type), "$options": "i"}
        docs = await run_guarded(
            "list_eligible",
            lambda: self._technicians.find(query).to_list(None),
            timeout=self._timeout,
            retries=self._retries,
        )
        users = await self._users_by_id([d["user_id"] for d in docs])
        techs = [self._merge(d, users.get(d["user_id"])) for d in docs]
        return [t for t in techs if t.is_active]

    async def _update(self, user_id: str, changes: Dict[str, Any]) -> Optional[Technician]:
        doc = await run_guarded(
            "update_technician",
            lambda: self._technicians.find_one_and_update(
                {"user_id": user_id}, {"$set": changes}, return_document=ReturnDocument.AFTER
            ),
            timeout=self._timeout,
        )
        if not doc:
            return None
        users = await self._users_by_id([user_id])
        return self._merge(doc, users.get(user_id))

    async def set_availability(self, user_id: str, is_available: bool) -> Optional[Technician]:
        return await self._update(user_id, {"is_available": is_available})

    async def update_location(
        self, user_id: str, latitude: float, longitude: float, at: datetime
    ) -> Optional[Technician]:
        return await self._update(
            user_id, {"latitude": latitude, "longitude": longitude, "last_location_update": at}
        )


class MongoCatalogLookup(CatalogLookup):
    def __init__(self, db: AsyncIOMotorDatabase, *, timeout: float, read_retries: int):
        self._db = db
        self._timeout = timeout
        self._retries = read_retries

    async def _find(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        oid = _oid_or_none(record_id)
        if oid is None:
            return None
        doc = await run_guarded(
            f"{collection}.find_one",
            lambda: self._db[collection].find_one({"_id": oid}),
            timeout=self._timeout,
            retries=self._retries,
        )
        return _doc_to_dict(doc) if doc else None

    async def get_service(self, service_id: str) -> Optional[Dict[str, Any]]:
        return await self._find("services", service_id)

    async def get_location(self, location_id: str) -> Optional[Dict[str, Any]]:
        return await self._find("locations", location_id)

    async def get_time_slot(self, availability_id: str) -> Optional[Dict[str, Any]]:
        return await self._find("availability", availability_id)

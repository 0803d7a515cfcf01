from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from pymongo import errors as mongo_errors

from errors import (
    AuthenticationError,
    DuplicateKeyError,
    NotFoundError,
    ValidationError,
    store_operation,
)
from member import ROLES, Member
from security import PasswordHasher
from services.base import ResourceQuery, ResourceService
from utils.validators import IdValidator, TextValidator

logger = logging.getLogger(__name__)

STUDENT_PROFILE_FIELDS = ("name", "email", "studentId", "department", "phone", "address")
PATRON_PROFILE_FIELDS = ("name", "email", "phone", "address")
# password is never written through the generic update
UPDATABLE_FIELDS = (
    "name", "email", "role", "studentId", "department", "phone", "address", "isActive",
)
# null is ignored for these; the rest may be cleared
REQUIRED_FIELDS = ("name", "email", "role", "isActive")


class MemberService(ResourceService):
    query = ResourceQuery(
        name="Member",
        filter_fields=frozenset({"role", "isActive"}),
        search_fields=("name", "email", "studentId"),
        projection={"password": 0},
        sort=(("registrationDate", -1),),
    )

    def __init__(self, collection, loans, hasher: PasswordHasher, **kwargs) -> None:
        super().__init__(collection, **kwargs)
        self.loans = loans
        self.hasher = hasher

    # ------------------------- Registration ------------------------- #
    def _insert(self, member: Member) -> Any:
        try:
            result = self.collection.insert_one(member.to_document())
        except mongo_errors.DuplicateKeyError as e:
            raise DuplicateKeyError("email", "Email already registered") from e
        logger.info(f"Member registered: {member.email} ({member.role})")
        return result.inserted_id

    def _ensure_email_free(self, email: str, exclude_id=None) -> None:
        query: Dict[str, Any] = {"email": email}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if self.collection.find_one(query, {"_id": 1}) is not None:
            raise DuplicateKeyError("email", "Email already registered")

    def _register(self, data: Mapping[str, Any], role: str) -> Dict[str, Any]:
        email = TextValidator.normalize_email(data.get("email"))
        self._ensure_email_free(email)
        payload = {**data, "email": email, "role": role}
        member = Member.from_dict(payload, self.hasher.hash(data["password"]))
        member_id = self._insert(member)
        return {"_id": member_id, "email": member.email}

    @store_operation
    def register_student(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        missing = [f for f in ("name", "email", "password", "studentId") if not data.get(f)]
        if missing:
            raise ValidationError("Missing required fields: name, email, password, studentId", details=missing)
        allowed = {k: data.get(k) for k in ("name", "email", "password", "studentId", "department", "phone", "address")}
        return {"message": "Student registered successfully", **self._register(allowed, "student")}

    @store_operation
    def register_patron(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        missing = [f for f in ("name", "email", "password") if not data.get(f)]
        if missing:
            raise ValidationError("Missing required fields: name, email, password", details=missing)
        allowed = {k: data.get(k) for k in ("name", "email", "password", "phone", "address")}
        return {"message": "Patron registered successfully", **self._register(allowed, "patron")}

    @store_operation
    def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Create a member of any role directly (administrative path)."""
        missing = [f for f in ("name", "email", "password") if not data.get(f)]
        if missing:
            raise ValidationError(details=missing)
        role = data.get("role") or "student"
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")
        result = self._register(data, role)
        return {"message": "Member created", "_id": result["_id"]}

    # ------------------------- Updates ------------------------- #
    def _apply_update(self, member_id: Any, changes: Dict[str, Any], match=None, unset=()):
        oid = IdValidator.to_object_id(member_id)
        for name in ("name", "email"):
            if name in changes and not str(changes[name]).strip():
                raise ValidationError(f"{name} cannot be empty")
        if "name" in changes:
            changes["name"] = changes["name"].strip()
        if "email" in changes:
            changes["email"] = TextValidator.normalize_email(changes["email"])
            self._ensure_email_free(changes["email"], exclude_id=oid)
        try:
            return self.update_fields(oid, changes, match=match, unset=unset)
        except mongo_errors.DuplicateKeyError as e:
            raise DuplicateKeyError("email", "Email already registered") from e

    @store_operation
    def update(self, member_id: Any, data: Mapping[str, Any]) -> Dict[str, Any]:
        changes = {
            k: v for k, v in data.items()
            if k in UPDATABLE_FIELDS and not (v is None and k in REQUIRED_FIELDS)
        }
        unset = []
        if "role" in changes:
            if changes["role"] not in ROLES:
                raise ValidationError(f"Unknown role: {changes['role']}")
            if changes["role"] != "student":
                # studentId only exists on students
                changes.pop("studentId", None)
                unset.append("studentId")
        member = self._apply_update(member_id, changes, unset=unset)
        if member is None:
            raise NotFoundError("Member not found")
        return {"message": "Member updated successfully", "member": member}

    def _update_profile(self, member_id: Any, data: Mapping[str, Any], role: str, fields) -> Dict[str, Any]:
        label = role.capitalize()
        changes = {k: data[k] for k in fields if data.get(k) is not None}
        oid = IdValidator.to_object_id(member_id)
        current = self.collection.find_one({"_id": oid}, {"role": 1})
        if current is None:
            raise NotFoundError(f"{label} not found")
        if current.get("role") != role:
            raise ValidationError(f"User is not a {role}")
        # role is part of the selector so a concurrent role change cannot be overwritten
        member = self._apply_update(oid, changes, match={"role": role})
        if member is None:
            raise ValidationError(f"User is not a {role}")
        return {"message": f"{label} profile updated successfully", "member": member}

    @store_operation
    def update_student_profile(self, member_id: Any, data: Mapping[str, Any]) -> Dict[str, Any]:
        return self._update_profile(member_id, data, "student", STUDENT_PROFILE_FIELDS)

    @store_operation
    def update_patron_profile(self, member_id: Any, data: Mapping[str, Any]) -> Dict[str, Any]:
        return self._update_profile(member_id, data, "patron", PATRON_PROFILE_FIELDS)

    def before_delete(self, oid) -> None:
        if self.loans.find_one({"userId": oid, "returned": False}, {"_id": 1}) is not None:
            raise ValidationError("Member has active loans")

    # ------------------------- Authentication ------------------------- #
    @store_operation
    def authenticate(self, email: str, password: str) -> Dict[str, Any]:
        """Return the member (without password) for valid credentials.

        Unknown email and wrong password fail the same way.
        """
        if not email or not password:
            raise ValidationError("Email and password are required")
        member = self.collection.find_one({"email": TextValidator.normalize_email(email)})
        if member is None or not self.hasher.verify(password, member.get("password", "")):
            logger.info("Failed login attempt")
            raise AuthenticationError()
        member.pop("password", None)
        return member

    # ------------------------- Reports ------------------------- #
    @store_operation
    def stats_overview(self) -> list:
        pipeline = [
            {
                "$group": {
                    "_id": "$role",
                    "count": {"$sum": 1},
                    "active": {"$sum": {"$cond": ["$isActive", 1, 0]}},
                }
            },
            {"$sort": {"_id": 1}},
        ]
        return list(self.collection.aggregate(pipeline))

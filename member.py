from __future__ import annotations

from datetime import datetime, timezone

ROLES = ("student", "patron", "admin")


class Member:
    """A registered library user. ``password`` always holds a hash, never plaintext."""

    def __init__(self, name: str, email: str, password: str, role: str = "student",
                 student_id: str | None = None, department: str | None = None,
                 phone: str | None = None, address: str | None = None,
                 registration_date: datetime | None = None, is_active: bool = True) -> None:
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        self.name = name.strip()
        self.email = email.strip().lower()
        self.password = password
        self.role = role
        self.student_id = student_id
        self.department = department
        self.phone = phone
        self.address = address
        self.registration_date = registration_date or datetime.now(timezone.utc).replace(tzinfo=None)
        self.is_active = is_active

    def to_document(self) -> dict:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        doc = {
            "name": self.name,
            "email": self.email,
            "password": self.password,
            "role": self.role,
            "department": self.department,
            "phone": self.phone,
            "address": self.address,
            "registrationDate": self.registration_date,
            "isActive": self.is_active,
            "createdAt": now,
            "updatedAt": now,
        }
        if self.student_id:
            doc["studentId"] = self.student_id
        return doc

    @staticmethod
    def from_dict(data: dict, password_hash: str) -> "Member":
        """Build a member from request data; the caller hashes the password first."""
        return Member(
            name=data["name"],
            email=data["email"],
            password=password_hash,
            role=data.get("role") or "student",
            student_id=data.get("studentId"),
            department=data.get("department"),
            phone=data.get("phone"),
            address=data.get("address"),
            registration_date=data.get("registrationDate"),
            is_active=data.get("isActive", True),
        )

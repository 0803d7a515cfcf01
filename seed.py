"""Mock members for local development and manual testing of the login endpoint."""

import logging
from typing import Dict, List

from pymongo.collection import Collection

from member import Member
from security import PasswordHasher

logger = logging.getLogger(__name__)

MOCK_MEMBERS: List[Dict] = [
    {
        "name": "John Student",
        "email": "john.student@example.com",
        "password": "password123",
        "role": "student",
        "studentId": "STU001",
        "department": "Computer Science",
        "phone": "555-0101",
        "address": "123 Main St, City",
        "isActive": True,
    },
    {
        "name": "Jane Patron",
        "email": "jane.patron@example.com",
        "password": "password456",
        "role": "patron",
        "phone": "555-0102",
        "address": "456 Oak Ave, City",
        "isActive": True,
    },
    {
        "name": "Alice Admin",
        "email": "alice.admin@example.com",
        "password": "admin123",
        "role": "admin",
        "phone": "555-0103",
        "address": "789 Pine Rd, City",
        "isActive": True,
    },
    {
        "name": "Bob Student",
        "email": "bob.student@example.com",
        "password": "password789",
        "role": "student",
        "studentId": "STU002",
        "department": "Mathematics",
        "phone": "555-0104",
        "address": "321 Elm St, City",
        "isActive": True,
    },
    {
        "name": "Carol Patron",
        "email": "carol.patron@example.com",
        "password": "password321",
        "role": "patron",
        "phone": "555-0105",
        "address": "654 Maple Dr, City",
        "isActive": False,
    },
    {
        "name": "David Student",
        "email": "david.student@example.com",
        "password": "password654",
        "role": "student",
        "studentId": "STU003",
        "department": "Engineering",
        "phone": "555-0106",
        "address": "987 Cedar Ln, City",
        "isActive": True,
    },
]


def seed_members(collection: Collection, hasher: PasswordHasher) -> int:
    """Replace every member with the mock set. Returns the number inserted."""
    removed = collection.delete_many({}).deleted_count
    logger.info(f"Cleared {removed} existing members")
    docs = [Member.from_dict(m, hasher.hash(m["password"])).to_document() for m in MOCK_MEMBERS]
    result = collection.insert_many(docs)
    logger.info(f"Inserted {len(result.inserted_ids)} members")
    return len(result.inserted_ids)

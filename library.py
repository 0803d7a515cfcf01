import logging
from typing import Any, Dict, Optional

from pymongo.database import Database

import database
from config import Settings, settings as default_settings
from security import BcryptHasher, PasswordHasher
from services import BookService, LoanService, MemberService

logger = logging.getLogger(__name__)


class Library:
    """Wires the member, book and loan services to one database.

    Built once per process (API lifespan or CLI command) and handed to the
    callers that need it; nothing here is a module-level singleton.
    """

    def __init__(self, db: Database, hasher: Optional[PasswordHasher] = None,
                 settings: Optional[Settings] = None) -> None:
        settings = settings or default_settings
        self.db = db
        self.hasher = hasher or BcryptHasher(rounds=settings.bcrypt_rounds)

        members = db[database.MEMBERS]
        books = db[database.BOOKS]
        loans = db[database.LOANS]
        paging = {"default_limit": settings.default_page_size, "max_limit": settings.max_page_size}

        self.members = MemberService(members, loans, self.hasher, **paging)
        self.books = BookService(books, loans, **paging)
        self.loans = LoanService(loans, members, books, **paging)

    def ping(self) -> bool:
        return database.ping(self.db)

    def statistics(self) -> Dict[str, Any]:
        """Member, book and loan reports in one mapping."""
        return {
            "members": self.members.stats_overview(),
            "books": self.books.stats_by_category(),
            "loans": self.loans.summary(),
        }

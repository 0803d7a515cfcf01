"""Resource services for members, books and loans."""

from services.base import ResourceQuery, ResourceService
from services.books import BookService
from services.loans import LoanService
from services.members import MemberService

__all__ = ["ResourceQuery", "ResourceService", "BookService", "LoanService", "MemberService"]

import pytest
from pymongo import errors as mongo_errors

import database
from book import Book
from config import Settings
from errors import DuplicateKeyError, InvalidIdError, StoreError, duplicate_field, store_operation
from library import Library
from member import Member
from security import BcryptHasher
from utils.validators import IdValidator


def test_library_wires_services_to_collections(lib, db):
    assert lib.members.collection.name == database.MEMBERS
    assert lib.books.collection.name == database.BOOKS
    assert lib.loans.collection.name == database.LOANS
    assert lib.loans.members is lib.members.collection


def test_library_uses_configured_page_sizes(db):
    lib = Library(db, hasher=BcryptHasher(rounds=4), settings=Settings(default_page_size=3, max_page_size=5))
    for i in range(6):
        lib.books.create({"title": f"Book {i}", "author": "A"})
    assert lib.books.list({})["pagination"]["limit"] == 3
    assert lib.books.list({"limit": "50"})["pagination"]["limit"] == 5


def test_statistics(lib):
    lib.books.create({"title": "Dune", "author": "Frank Herbert", "category": "Fiction"})
    stats = lib.statistics()
    assert stats["books"] == [{"_id": "Fiction", "total": 1, "available": 1}]
    assert stats["members"] == []
    assert stats["loans"] == {"activeLoans": 0, "returnedLoans": 0, "overdueLoans": 0}


def test_client_options_follow_settings():
    options = database.client_options(Settings())
    assert options["maxPoolSize"] == 10
    assert options["minPoolSize"] == 5
    assert options["waitQueueTimeoutMS"] == 5000
    assert options["retryWrites"] is True
    assert options["w"] == "majority"


def test_ensure_indexes(db):
    database.ensure_indexes(db)
    members = db[database.MEMBERS].index_information()
    books = db[database.BOOKS].index_information()
    loans = db[database.LOANS].index_information()
    assert members["email_1"]["unique"] is True
    assert books["isbn_1"]["unique"] is True
    assert "dueDate_1_returned_1_isOverdue_1" in loans


def test_duplicate_field_from_key_pattern():
    exc = mongo_errors.DuplicateKeyError("E11000 duplicate key", 11000, {"keyPattern": {"isbn": 1}})
    assert duplicate_field(exc) == "isbn"


def test_duplicate_field_from_message():
    exc = mongo_errors.DuplicateKeyError(
        "E11000 duplicate key error collection: Libra.members index: email_1 dup key: { email: \"a@b.c\" }", 11000
    )
    assert duplicate_field(exc) == "email"


def test_store_operation_translates_driver_errors():
    @store_operation
    def duplicate():
        raise mongo_errors.DuplicateKeyError("dup", 11000, {"keyValue": {"isbn": "111"}})

    @store_operation
    def timeout():
        raise mongo_errors.ServerSelectionTimeoutError("no servers")

    with pytest.raises(DuplicateKeyError) as dup:
        duplicate()
    assert dup.value.message == "isbn must be unique"
    assert isinstance(dup.value.__cause__, mongo_errors.DuplicateKeyError)

    with pytest.raises(StoreError) as err:
        timeout()
    assert err.value.status_code == 500
    assert "no servers" not in err.value.message


def test_object_id_validation():
    assert IdValidator.is_valid_object_id("5f1d7f1c2b3a4c5d6e7f8a9b")
    assert not IdValidator.is_valid_object_id("5f1d7f1c")
    with pytest.raises(InvalidIdError):
        IdValidator.to_object_id("zzzzzzzzzzzzzzzzzzzzzzzz")


def test_bcrypt_hasher():
    hasher = BcryptHasher(rounds=4)
    hashed = hasher.hash("secret")
    assert hasher.verify("secret", hashed)
    assert not hasher.verify("wrong", hashed)
    assert not hasher.verify("secret", "not-a-hash")
    assert not hasher.verify("", hashed)


def test_member_document():
    member = Member(" Jane ", " Jane@Example.COM ", "hash", role="patron")
    doc = member.to_document()
    assert doc["name"] == "Jane"
    assert doc["email"] == "jane@example.com"
    assert "studentId" not in doc
    assert doc["isActive"] is True
    with pytest.raises(ValueError):
        Member("X", "x@example.com", "hash", role="librarian")


def test_book_document_omits_blank_isbn():
    assert "isbn" not in Book("Dune", "Frank Herbert", isbn="  ").to_document()
    assert Book("Dune", "Frank Herbert", isbn=" 111 ").to_document()["isbn"] == "111"

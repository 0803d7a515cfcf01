from datetime import timedelta

import pytest
from bson import ObjectId

from services.base import utcnow

STUDENT = {
    "name": "John Student",
    "email": "john.student@example.com",
    "password": "password123",
    "studentId": "STU001",
}
PATRON = {"name": "Jane Patron", "email": "jane.patron@example.com", "password": "password456"}


def register(client, kind, payload):
    response = client.post(f"/members/register/{kind}", json=payload)
    assert response.status_code == 201, response.text
    return response.json()["_id"]


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert {"status", "uptime", "memory", "timestamp", "db"} <= set(body)


def test_register_student(client):
    response = client.post("/members/register/student", json=STUDENT)
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Student registered successfully"
    assert body["email"] == "john.student@example.com"
    assert ObjectId.is_valid(body["_id"])


def test_register_missing_field_is_400(client):
    payload = {k: v for k, v in STUDENT.items() if k != "studentId"}
    response = client.post("/members/register/student", json=payload)
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation failed"
    assert body["details"][0]["field"] == "studentId"


def test_register_duplicate_email_case_insensitive(client):
    first = client.post("/members/register/patron", json=PATRON)
    second = client.post("/members/register/patron", json={**PATRON, "email": "Jane.Patron@EXAMPLE.com"})
    assert first.status_code == 201
    assert second.status_code == 400
    assert second.json() == {"error": "Email already registered"}


def test_login(client):
    register(client, "student", STUDENT)
    response = client.post("/members/login", json={"email": STUDENT["email"], "password": "password123"})
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "login successful"
    assert body["user"]["email"] == STUDENT["email"]
    assert "password" not in body["user"]


def test_login_failures_look_the_same(client):
    register(client, "student", STUDENT)
    wrong_password = client.post("/members/login", json={"email": STUDENT["email"], "password": "bad"})
    unknown_email = client.post("/members/login", json={"email": "ghost@example.com", "password": "password123"})
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {"message": "Invalid email or password"}


def test_login_missing_fields(client):
    response = client.post("/members/login", json={"email": STUDENT["email"]})
    assert response.status_code == 400
    assert "message" in response.json()


def test_student_update_on_patron_is_rejected(client):
    patron_id = register(client, "patron", PATRON)
    response = client.put(f"/members/{patron_id}/student", json={"name": "Changed"})
    assert response.status_code == 400
    assert client.get(f"/members/{patron_id}").json()["name"] == "Jane Patron"


def test_member_routes(client):
    member_id = register(client, "student", STUDENT)

    listing = client.get("/members", params={"role": "student", "search": "john"}).json()
    assert listing["pagination"]["total"] == 1
    assert "password" not in listing["data"][0]

    updated = client.put(f"/members/{member_id}", json={"department": "Mathematics"})
    assert updated.status_code == 200
    assert updated.json()["member"]["department"] == "Mathematics"

    profile = client.put(f"/members/{member_id}/student", json={"phone": "555-0101"})
    assert profile.json()["message"] == "Student profile updated successfully"

    stats = client.get("/members/stats/overview").json()
    assert stats == [{"_id": "student", "count": 1, "active": 1}]

    assert client.delete(f"/members/{member_id}").json() == {"message": "Member deleted"}
    assert client.get(f"/members/{member_id}").status_code == 404


def test_create_member_directly(client):
    response = client.post("/members", json={**PATRON, "role": "admin"})
    assert response.status_code == 201
    assert response.json()["message"] == "Member created"


def test_invalid_id_is_400(client):
    response = client.get("/books/not-an-id")
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid ID format"}


def test_missing_book_is_404(client):
    response = client.get(f"/books/{ObjectId()}")
    assert response.status_code == 404
    assert response.json() == {"error": "Book not found"}


def test_books_combined_query(client):
    for i in range(6):
        client.post("/books", json={"title": f"Harry Potter {i}", "author": "J. K. Rowling", "category": "Fiction"})
    client.post("/books", json={"title": "Harry Potter X", "author": "J. K. Rowling", "category": "Fiction",
                                "available": False})
    client.post("/books", json={"title": "Emma", "author": "Jane Austen", "category": "Fiction"})

    response = client.get("/books?category=Fiction&available=true&search=Harry&page=1&limit=5")
    assert response.status_code == 200
    body = response.json()
    assert body["pagination"] == {"total": 6, "page": 1, "limit": 5, "pages": 2}
    assert len(body["data"]) == 5


def test_book_routes(client):
    created = client.post("/books", json={"title": "Dune", "author": "Frank Herbert", "isbn": "111",
                                          "category": "Science Fiction"})
    assert created.status_code == 201
    book_id = created.json()["_id"]

    duplicate = client.post("/books", json={"title": "Dune", "author": "Frank Herbert", "isbn": "111"})
    assert duplicate.status_code == 400
    assert duplicate.json() == {"error": "isbn must be unique"}

    updated = client.put(f"/books/{book_id}", json={"quantity": 4})
    assert updated.json()["quantity"] == 4

    stats = client.get("/books/stats/by-category").json()
    assert stats == [{"_id": "Science Fiction", "total": 1, "available": 1}]

    assert client.delete(f"/books/{book_id}").json() == {"message": "Book deleted"}


@pytest.fixture
def loan_refs(client):
    member_id = register(client, "student", STUDENT)
    book_id = client.post("/books", json={"title": "Dune", "author": "Frank Herbert"}).json()["_id"]
    return member_id, book_id


def test_loan_lifecycle(client, lib, loan_refs):
    member_id, book_id = loan_refs
    due = (utcnow() - timedelta(days=1)).isoformat()
    created = client.post("/loans", json={"userId": member_id, "bookId": book_id, "dueDate": due})
    assert created.status_code == 201
    loan = created.json()
    assert loan["userId"]["name"] == "John Student"
    assert loan["bookId"]["title"] == "Dune"

    lib.loans.refresh_overdue()
    overdue = client.get("/loans/reports/overdue").json()
    assert overdue["pagination"]["total"] == 1

    assert client.get("/loans/stats/summary").json() == {"activeLoans": 1, "returnedLoans": 0, "overdueLoans": 1}

    returned = client.post(f"/loans/{loan['_id']}/return")
    assert returned.status_code == 200
    assert returned.json()["returned"] is True
    assert client.get("/loans/reports/overdue").json()["pagination"]["total"] == 0

    again = client.post(f"/loans/{loan['_id']}/return")
    assert again.status_code == 400

    reopen = client.put(f"/loans/{loan['_id']}", json={"returned": False})
    assert reopen.status_code == 400


def test_loan_for_unknown_member_is_400(client, loan_refs):
    _, book_id = loan_refs
    response = client.post("/loans", json={"userId": str(ObjectId()), "bookId": book_id,
                                           "dueDate": "2030-01-01T00:00:00Z"})
    assert response.status_code == 400


def test_member_loans_and_borrowed(client, loan_refs):
    member_id, book_id = loan_refs
    client.post("/loans", json={"userId": member_id, "bookId": book_id, "dueDate": "2030-01-01T00:00:00Z"})

    mine = client.get(f"/loans/user/{member_id}").json()
    assert mine["pagination"]["total"] == 1
    assert mine["data"][0]["userId"] == member_id

    borrowed = client.get("/borrowed").json()
    assert borrowed["pagination"]["limit"] == 20
    assert borrowed["data"][0]["userId"]["email"] == STUDENT["email"]

    filtered = client.get("/loans", params={"userId": member_id, "returned": "false"}).json()
    assert filtered["pagination"]["total"] == 1


def test_delete_member_with_active_loan_is_refused(client, loan_refs):
    member_id, book_id = loan_refs
    client.post("/loans", json={"userId": member_id, "bookId": book_id, "dueDate": "2030-01-01T00:00:00Z"})
    response = client.delete(f"/members/{member_id}")
    assert response.status_code == 400
    assert response.json() == {"error": "Member has active loans"}


def test_loan_update_with_nulls_keeps_loan_active(client, lib, loan_refs):
    member_id, book_id = loan_refs
    due = (utcnow() - timedelta(days=1)).isoformat()
    loan_id = client.post("/loans", json={"userId": member_id, "bookId": book_id, "dueDate": due}).json()["_id"]
    lib.loans.refresh_overdue()

    response = client.put(f"/loans/{loan_id}", json={"returned": None, "dueDate": None})

    assert response.status_code == 200
    assert response.json()["returned"] is False
    assert response.json()["dueDate"] is not None
    assert client.get("/loans/stats/summary").json() == {"activeLoans": 1, "returnedLoans": 0, "overdueLoans": 1}


def test_member_update_with_nulls_keeps_required_fields(client):
    member_id = register(client, "patron", PATRON)
    response = client.put(f"/members/{member_id}", json={"email": None, "name": None, "isActive": None})
    assert response.status_code == 200
    member = response.json()["member"]
    assert member["email"] == PATRON["email"]
    assert member["name"] == PATRON["name"]
    assert member["isActive"] is True


def test_member_update_with_blank_email_is_400(client):
    member_id = register(client, "patron", PATRON)
    response = client.put(f"/members/{member_id}", json={"email": ""})
    assert response.status_code == 400
    assert client.get(f"/members/{member_id}").json()["email"] == PATRON["email"]


def test_book_update_with_nulls_keeps_required_fields(client):
    book_id = client.post("/books", json={"title": "Dune", "author": "Frank Herbert"}).json()["_id"]
    response = client.put(f"/books/{book_id}", json={"title": None, "available": None})
    assert response.status_code == 200
    assert response.json()["title"] == "Dune"
    assert response.json()["available"] is True

    blank = client.put(f"/books/{book_id}", json={"author": ""})
    assert blank.status_code == 400

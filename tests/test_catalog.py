import pytest

from library_admin.errors import ConflictError, NotFoundError, ValidationError


def test_student_requires_fields(students):
    with pytest.raises(ValidationError):
        students.create({"name": "Ravi", "phone_number": "123"})
    with pytest.raises(ValidationError):
        students.create({"name": "  ", "email": "r@x.org", "phone_number": "123"})


def test_student_gender_defaults_and_normalises(students):
    ravi = students.create({"name": "Ravi", "email": "r@x.org", "phone_number": "1"})
    meera = students.create({"name": "Meera", "email": "m@x.org", "phone_number": "2", "gender": "female"})
    assert ravi.gender == "Male"
    assert meera.gender == "Female"
    with pytest.raises(ValidationError):
        students.create({"name": "Kim", "email": "k@x.org", "phone_number": "3", "gender": "Robot"})


def test_students_list_by_name_and_search(students):
    for name, email in (("Zoya", "zoya@x.org"), ("Arjun", "arjun@school.in"), ("Meera", "meera@x.org")):
        students.create({"name": name, "email": email, "phone_number": "1"})
    assert [s.name for s in students.list()] == ["Arjun", "Meera", "Zoya"]
    assert [s.name for s in students.search("SCHOOL")] == ["Arjun"]
    assert [s.name for s in students.search("e")] == ["Meera"]
    assert len(students.search("")) == 3


def test_student_update_and_delete(students, student):
    updated = students.update(student.id, {"phone_number": "5550000"})
    assert updated.phone_number == "5550000"
    assert updated.email == student.email
    students.delete(student.id)
    with pytest.raises(NotFoundError):
        students.get(student.id)


def test_deleting_missing_student_is_not_found(students):
    with pytest.raises(NotFoundError):
        students.delete(12345)


def test_book_available_defaults_to_total(book):
    assert book.total_copies == 3
    assert book.available_copies == 3


def test_book_copy_ranges_are_validated(books):
    base = {"title": "T", "author": "A", "category": "C"}
    with pytest.raises(ValidationError):
        books.create(dict(base, isbn="1", total_copies=0))
    with pytest.raises(ValidationError):
        books.create(dict(base, isbn="2", total_copies=2, available_copies=3))
    with pytest.raises(ValidationError):
        books.create(dict(base, isbn="3", total_copies="many"))
    with pytest.raises(ValidationError):
        books.create({"title": "T", "author": "A", "isbn": "4"})


def test_book_duplicate_isbn(books, book):
    with pytest.raises(ConflictError):
        books.create({"title": "Copy", "author": "A", "isbn": book.isbn, "category": "C"})


def test_changing_total_copies_shifts_available(books, book, ledger, student):
    ledger.issue(student.id, book.id, "2099-01-01")
    grown = books.update(book.id, {"total_copies": 5})
    assert (grown.total_copies, grown.available_copies) == (5, 4)
    shrunk = books.update(book.id, {"total_copies": 1})
    assert (shrunk.total_copies, shrunk.available_copies) == (1, 0)


def test_book_update_rejects_available_above_total(books, book):
    with pytest.raises(ValidationError):
        books.update(book.id, {"available_copies": 4})
    assert books.get(book.id).available_copies == 3


def test_book_update_missing(books):
    with pytest.raises(NotFoundError):
        books.update(999, {"title": "Nothing"})


def test_available_books_and_categories(books):
    books.create({"title": "Out", "author": "A", "isbn": "1", "category": "History", "total_copies": 1, "available_copies": 0})
    books.create({"title": "In", "author": "B", "isbn": "2", "category": "Science"})
    books.create({"title": "Also In", "author": "C", "isbn": "3", "category": "Science"})
    assert [b.title for b in books.available()] == ["Also In", "In"]
    assert books.categories() == ["History", "Science"]


def test_book_search(books, book):
    books.create({"title": "Clean Code", "author": "Robert Martin", "isbn": "978-0132350884", "category": "Programming"})
    books.create({"title": "Sapiens", "author": "Harari", "isbn": "978-0062316097", "category": "History"})
    assert [b.title for b in books.search("pragmatic")] == ["The Pragmatic Programmer"]
    assert [b.title for b in books.search("MARTIN")] == ["Clean Code"]
    assert [b.title for b in books.search("0062316097")] == ["Sapiens"]
    assert [b.title for b in books.search("", category="Programming")] == ["Clean Code", "The Pragmatic Programmer"]


def test_book_search_available_only(books, book):
    books.create({"title": "Out", "author": "A", "isbn": "1", "category": "Programming", "total_copies": 1, "available_copies": 0})
    books.create({"title": "Clean Code", "author": "Robert Martin", "isbn": "2", "category": "Programming"})
    assert [b.title for b in books.search(category="Programming")] == ["Clean Code", "Out"]
    assert [b.title for b in books.search(category="Programming", available_only=True)] == ["Clean Code"]
    assert [b.title for b in books.search(order_key="title", descending=True, available_only=True)] == [
        "The Pragmatic Programmer",
        "Clean Code",
    ]


def test_student_search_descending(students, student):
    students.create({"name": "Bilal Khan", "email": "bilal@example.com", "phone_number": "2"})
    assert [s.name for s in students.search(descending=True)] == ["Bilal Khan", "Asha Rao"]

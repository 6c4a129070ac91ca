"""
In-memory stand-ins for RelationalStore and DocumentStore.

They honor the same method signatures and raise the same library_sync.errors
types as the real clients, so the core can be exercised without databases.
"""

import copy
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from library_sync.errors import DuplicateKeyError, ValidationError
from library_sync.identity import (
    BOOK_ANALYTICS,
    BOOK_ANALYTICS_COUNTERS,
    BOOK_CONTENT,
    MEMBER_PROFILES,
    TELEMETRY_EVENTS,
)
from library_sync.stores import sql
from library_sync.stores.relational import QueryResult


class FakeRelationalStore:
    """PostgreSQL stand-in that understands the statements in library_sync.stores.sql."""

    def __init__(self):
        self.books: Dict[int, Dict[str, Any]] = {}
        self.members: Dict[int, Dict[str, Any]] = {}
        self.authors: Dict[int, Dict[str, Any]] = {}
        self.categories: Dict[int, str] = {}
        self.loans: List[Dict[str, Any]] = []
        self.next_book_id = 1
        self.next_member_id = 1
        self.calls: List[Any] = []
        self.failures: Dict[str, Exception] = {}
        self.iter_batch_sizes: List[int] = []

    # Test helpers

    def fail(self, statement: str, exc: Exception) -> None:
        """Raise exc the next time statement (SQL constant or procedure name) runs."""
        self.failures[statement] = exc

    def add_book(self, book_id: int, title: str, status: str = "Available", isbn: Optional[str] = None,
                 author_id: Optional[int] = None, category_id: Optional[int] = None) -> None:
        self.books[book_id] = {
            "book_id": book_id,
            "title": title,
            "isbn": isbn,
            "status": status,
            "author_id": author_id,
            "category_id": category_id,
        }
        self.next_book_id = max(self.next_book_id, book_id + 1)

    def add_member(self, member_id: int, profile_ref: Optional[str], email: Optional[str] = None) -> None:
        self.members[member_id] = {
            "member_id": member_id,
            "profile_ref": profile_ref,
            "email": email or f"member{member_id}@example.org",
        }
        self.next_member_id = max(self.next_member_id, member_id + 1)

    def add_loan(self, book_id: int, days_kept: Optional[int] = None) -> None:
        self.loans.append({"book_id": book_id, "days_kept": days_kept})

    # RelationalStore interface

    def execute(self, statement: str, params=None) -> QueryResult:
        self.calls.append((statement, params))
        self._maybe_fail(statement)

        if statement == sql.INSERT_BOOK:
            return self._insert_book(*params)
        if statement == sql.CATALOG_LIST:
            rows = [self._catalog_row(book) for book in sorted(self.books.values(), key=lambda b: b["title"])]
            return QueryResult(rows=rows, affected_rows=len(rows))
        if statement == sql.CATALOG_SEARCH:
            search_type, pattern = params[0], params[1]
            needle = pattern[1:-1].replace("\\%", "%").replace("\\_", "_").replace("\\\\", "\\").lower()
            rows = [
                self._catalog_row(book)
                for book in sorted(self.books.values(), key=lambda b: b["title"])
                if self._search_hit(self._catalog_row(book), search_type, needle)
            ]
            return QueryResult(rows=rows, affected_rows=len(rows))
        if statement == sql.CATALOG_ITEM:
            book = self.books.get(int(params[0]))
            return QueryResult(rows=[self._catalog_row(book)] if book else [])
        if statement == sql.BORROW_COUNTS:
            counts = defaultdict(int)
            for loan in self.loans:
                counts[loan["book_id"]] += 1
            return QueryResult(rows=[{"book_id": k, "borrow_count": v} for k, v in counts.items()])
        if statement == sql.RETURN_TIME_BY_BOOK:
            durations = defaultdict(list)
            for loan in self.loans:
                if loan["days_kept"] is not None:
                    durations[loan["book_id"]].append(loan["days_kept"])
            return QueryResult(rows=[
                {"book_id": k, "avg_return_days": sum(v) / len(v)} for k, v in durations.items()
            ])
        if statement == sql.GLOBAL_RETURN_TIME:
            returned = [loan["days_kept"] for loan in self.loans if loan["days_kept"] is not None]
            avg = sum(returned) / len(returned) if returned else 0.0
            return QueryResult(rows=[{"avg_return_days": avg}])
        if statement == sql.BOOK_TITLES:
            wanted = set(params[0])
            rows = [
                {"book_id": book["book_id"], "title": book["title"]}
                for book in self.books.values() if book["book_id"] in wanted
            ]
            return QueryResult(rows=rows)

        raise NotImplementedError(statement)

    def call_procedure(self, name: str, params) -> QueryResult:
        self.calls.append((name, params))
        self._maybe_fail(name)

        if name != sql.CREATE_MEMBER_PROCEDURE:
            raise NotImplementedError(name)

        profile_ref, password, first_name, last_name, email, phone = params
        if not email or "@" not in email:
            raise ValidationError(f"Invalid email address: {email}", store="relational", code="P0001")
        if not password or len(password) < 8:
            raise ValidationError("Password must be at least 8 characters long", store="relational", code="P0001")
        if any(member["email"] == email.lower() for member in self.members.values()):
            raise DuplicateKeyError("duplicate key value violates unique constraint", store="relational", code="23505")

        member_id = self.next_member_id
        self.next_member_id += 1
        self.members[member_id] = {
            "member_id": member_id,
            "profile_ref": profile_ref,
            "email": email.lower(),
            "first_name": first_name,
            "last_name": last_name,
            "phone": phone,
        }
        return QueryResult(rows=[{"create_member": member_id}], affected_rows=1)

    def iter_rows(self, statement: str, params=None, batch_size: int = 1000):
        self.calls.append((statement, params))
        self.iter_batch_sizes.append(batch_size)
        self._maybe_fail(statement)

        if statement == sql.SELECT_BOOK_KEYS:
            for book_id in sorted(self.books):
                yield {"book_id": book_id, "title": self.books[book_id]["title"]}
        elif statement == sql.SELECT_MEMBER_KEYS:
            for member_id in sorted(self.members):
                yield {"member_id": member_id, "profile_ref": self.members[member_id]["profile_ref"]}
        else:
            raise NotImplementedError(statement)

    def close(self) -> None:
        pass

    def _insert_book(self, title, isbn, author_id, category_id) -> QueryResult:
        if not title or not str(title).strip():
            raise ValidationError('null value in column "title" violates not-null constraint',
                                  store="relational", code="23502")
        if isbn and any(book["isbn"] == isbn for book in self.books.values()):
            raise DuplicateKeyError("duplicate key value violates unique constraint \"books_isbn_key\"",
                                    store="relational", code="23505")

        book_id = self.next_book_id
        self.next_book_id += 1
        self.add_book(book_id, title, isbn=isbn, author_id=author_id, category_id=category_id)
        return QueryResult(insert_id=book_id, rows=[{"book_id": book_id}], affected_rows=1)

    def _catalog_row(self, book: Dict[str, Any]) -> Dict[str, Any]:
        author = self.authors.get(book.get("author_id"))
        return {
            "book_id": book["book_id"],
            "title": book["title"],
            "isbn": book["isbn"],
            "status": book["status"],
            "author_name": f"{author['first_name']} {author['last_name']}" if author else None,
            "category_name": self.categories.get(book.get("category_id")),
        }

    def _search_hit(self, row: Dict[str, Any], search_type: str, needle: str) -> bool:
        columns = {"title": "title", "isbn": "isbn", "author": "author_name", "category": "category_name"}
        wanted = columns.values() if search_type == "all" else [columns[search_type]]
        return any(row.get(name) is not None and needle in row[name].lower() for name in wanted)

    def _maybe_fail(self, statement: str) -> None:
        exc = self.failures.pop(statement, None)
        if exc is not None:
            raise exc


PRIMARY_KEYS = {
    BOOK_CONTENT: "mysql_book_id",
    BOOK_ANALYTICS_COUNTERS: "book_content_id",
    BOOK_ANALYTICS: "book_content_id",
    MEMBER_PROFILES: "id",
    TELEMETRY_EVENTS: "event_id",
}


class FakeDocumentStore:
    """ScyllaDB stand-in keyed the same way as schema/document.cql."""

    def __init__(self, in_chunk_size: int = 100):
        self.tables: Dict[str, Dict[Any, Dict[str, Any]]] = defaultdict(dict)
        self.in_chunk_size = in_chunk_size
        self.failures: Dict[Any, Exception] = {}
        self.writes: List[Any] = []
        self.find_in_calls: List[List[Any]] = []
        self.scan_batch_sizes: List[int] = []
        self.preset_ids: List[uuid.UUID] = []
        self.hooks: Dict[Any, Callable[[], None]] = {}

    # Test helpers

    def fail(self, operation: str, collection: str, exc: Exception) -> None:
        """Raise exc on the next `operation` against `collection`."""
        self.failures[(operation, collection)] = exc

    def before(self, operation: str, collection: str, hook: Callable[[], None]) -> None:
        """Run hook once, just before the next `operation` against `collection`."""
        self.hooks[(operation, collection)] = hook

    def put(self, collection: str, document: Dict[str, Any]) -> None:
        """Store a document directly, bypassing failure injection."""
        self.tables[collection][document[PRIMARY_KEYS[collection]]] = dict(document)

    def rows(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self.tables[collection].values()]

    # DocumentStore interface

    def new_document_id(self) -> uuid.UUID:
        if self.preset_ids:
            return self.preset_ids.pop(0)
        return uuid.uuid4()

    def create(self, collection, document, document_id=None, id_field="id", if_not_exists=False):
        self._maybe_fail("create", collection)
        values = {k: v for k, v in document.items() if v is not None}
        if document_id is not None:
            values[id_field] = document_id
        elif values.get(id_field) is None:
            values[id_field] = self.new_document_id()

        key = values[PRIMARY_KEYS[collection]]
        table = self.tables[collection]
        if if_not_exists and key in table:
            raise DuplicateKeyError(f"Document already exists in {collection}", store="document")

        table.setdefault(key, {}).update(copy.deepcopy(values))
        self.writes.append(("create", collection, key))
        return values[id_field]

    def find_one(self, collection, field, value, columns=None):
        self._maybe_fail("find_one", collection)
        for doc in self._match(collection, field, [value]):
            return self._project(doc, columns)
        return None

    def find_in(self, collection, field, values, columns=None):
        self._maybe_fail("find_in", collection)
        keys = list(dict.fromkeys(values))
        self.find_in_calls.append(keys)
        return [self._project(doc, columns) for doc in self._match(collection, field, keys)]

    def scan(self, collection, columns=None, batch_size=None):
        self._maybe_fail("scan", collection)
        self.scan_batch_sizes.append(batch_size)
        for doc in list(self.tables[collection].values()):
            yield self._project(doc, columns)

    def increment(self, collection, field, value, counters):
        self._maybe_fail("increment", collection)
        if not counters:
            return
        doc = self.tables[collection].setdefault(value, {field: value})
        for name, delta in counters.items():
            doc[name] = (doc.get(name) or 0) + int(delta)
        self.writes.append(("increment", collection, value))

    def append(self, collection, field, value, column, items):
        self._maybe_fail("append", collection)
        doc = self.tables[collection].setdefault(value, {field: value})
        doc[column] = list(doc.get(column) or []) + list(items)
        self.writes.append(("append", collection, value))

    def compare_and_set(self, collection, field, value, column, expected, new):
        self._maybe_fail("compare_and_set", collection)
        doc = self.tables[collection].get(value)
        if doc is None or doc.get(column) != expected:
            return False
        doc[column] = new
        self.writes.append(("compare_and_set", collection, value))
        return True

    def delete(self, collection, field, value, if_values=None):
        self._maybe_fail("delete", collection)
        matched = [k for k, doc in self.tables[collection].items() if doc.get(field) == value]
        if if_values and not all(
            all(self.tables[collection][k].get(name) == expected for name, expected in if_values.items())
            for k in matched
        ):
            return False
        for key in matched:
            del self.tables[collection][key]
        self.writes.append(("delete", collection, value))
        return True

    def close(self) -> None:
        pass

    def _match(self, collection, field, values):
        wanted = set(values)
        return [doc for doc in self.tables[collection].values() if doc.get(field) in wanted]

    def _project(self, doc, columns):
        doc = copy.deepcopy(doc)
        if not columns:
            return doc
        return {name: doc.get(name) for name in columns}

    def _maybe_fail(self, operation, collection):
        hook = self.hooks.pop((operation, collection), None)
        if hook is not None:
            hook()
        exc = self.failures.pop((operation, collection), None)
        if exc is not None:
            raise exc

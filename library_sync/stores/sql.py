"""
Relational statements issued by the correlation subsystem.

Stored-procedure bodies live in schema/relational.sql; only their call
signatures matter here.
"""

INSERT_BOOK = """
    INSERT INTO books (title, isbn, status, author_id, category_id)
    VALUES (%s, %s, 'Available', %s, %s)
    RETURNING book_id
"""

CREATE_MEMBER_PROCEDURE = "create_member"

SELECT_BOOK_KEYS = "SELECT book_id, title FROM books ORDER BY book_id"

SELECT_MEMBER_KEYS = "SELECT member_id, profile_ref FROM members ORDER BY member_id"

CATALOG_LIST = """
    SELECT b.book_id, b.title, b.isbn, b.status,
           CONCAT(a.first_name, ' ', a.last_name) AS author_name,
           c.category AS category_name
    FROM books b
    LEFT JOIN authors a ON b.author_id = a.author_id
    LEFT JOIN categories c ON b.category_id = c.category_id
    ORDER BY b.title
"""

CATALOG_ITEM = """
    SELECT b.book_id, b.title, b.isbn, b.status,
           CONCAT(a.first_name, ' ', a.last_name) AS author_name,
           c.category AS category_name
    FROM books b
    LEFT JOIN authors a ON b.author_id = a.author_id
    LEFT JOIN categories c ON b.category_id = c.category_id
    WHERE b.book_id = %s
"""

BORROW_COUNTS = """
    SELECT book_id, COUNT(*) AS borrow_count
    FROM loans
    GROUP BY book_id
"""

RETURN_TIME_BY_BOOK = """
    SELECT book_id, AVG(returned_at::date - borrowed_at::date)::float AS avg_return_days
    FROM loans
    WHERE returned_at IS NOT NULL
    GROUP BY book_id
"""

GLOBAL_RETURN_TIME = """
    SELECT COALESCE(AVG(returned_at::date - borrowed_at::date), 0)::float AS avg_return_days
    FROM loans
    WHERE returned_at IS NOT NULL
"""

BOOK_TITLES = "SELECT book_id, title FROM books WHERE book_id = ANY(%s)"

# Parameters: (type, pattern) once per searchable column
CATALOG_SEARCH = """
    SELECT b.book_id, b.title, b.isbn, b.status,
           CONCAT(a.first_name, ' ', a.last_name) AS author_name,
           c.category AS category_name
    FROM books b
    LEFT JOIN authors a ON b.author_id = a.author_id
    LEFT JOIN categories c ON b.category_id = c.category_id
    WHERE (%s IN ('all', 'title') AND b.title ILIKE %s)
       OR (%s IN ('all', 'isbn') AND b.isbn ILIKE %s)
       OR (%s IN ('all', 'author') AND CONCAT(a.first_name, ' ', a.last_name) ILIKE %s)
       OR (%s IN ('all', 'category') AND c.category ILIKE %s)
    ORDER BY b.title
"""

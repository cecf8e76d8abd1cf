"""
Pytest test suite for the enrollment backend.

Test categories:
- Unit tests: service layer against in-memory SQLite, gateway mocked
- API tests: full FastAPI app over ASGITransport
- Integration tests: file-backed SQLite, concurrent resolvers
"""

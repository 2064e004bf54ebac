# gitsmithy test suite
# Tests are organized by type:
# - unit/: Fast, isolated tests for one service against fixture repositories
# - integration/: API tests through the FastAPI application

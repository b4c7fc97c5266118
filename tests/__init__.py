"""
Tests Package - Unit tests for the Gradescope client.
=====================================================

Test modules:
- test_shared: Config, errors, schemas, utils and logging
- test_scraping: Transport, session, parser, mapper and pagination
- test_client: Listings, lookups, fan-out and snapshot
- test_cli: Typer commands and exit codes

Run tests with:
    pytest tests/
    pytest tests/ -v --cov=src/gradescope_client
"""

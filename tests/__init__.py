"""
repocore Test Suite.

This package contains:
- unit/: Unit tests (no database files)
- integration/: Integration tests (real SQLite files in temporary directories)
"""

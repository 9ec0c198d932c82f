"""Command-line tools for setlist-import.

- ``python -m setlist_import.cli import <key> [--key ...]`` -- run imports
- ``python -m setlist_import.cli status <job_id>`` -- show job progress
"""

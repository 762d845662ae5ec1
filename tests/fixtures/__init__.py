"""Shared test helpers for the beatfeed scheduler.

- mock_fixtures: fakes for the platform, the document store and the clock
- data_fixtures: sample records and stored documents
"""

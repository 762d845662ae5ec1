"""Smoke tests - fast sanity checks for every commit.

These tests start the application with in-memory storage and validate:
- Server starts and responds
- Configuration loads correctly
- Scheduler state survives a reload through the store
"""

"""Game domain services: round state machine, scoring, clicks, roster, timers.

This package contains pure(ish) protocol logic shared by the HTTP routes
and the host / player client sessions, keeping transport concerns
separated from core game mechanics. Nothing here touches the database.
"""

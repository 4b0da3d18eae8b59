"""Conflict rules, notification dispatch, orchestration and reporting."""

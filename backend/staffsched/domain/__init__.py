"""Domain entities, request/response schemas and calendar helpers."""

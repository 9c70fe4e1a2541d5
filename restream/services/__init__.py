"""
Service layer for stream operations.

This layer separates the command surface from HTTP request handling,
so the same operations can back the API, a CLI or a desktop shell.
"""

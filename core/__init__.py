"""
Core Package

Venue-agnostic building blocks shared by the connectors:
- config: Settings loaded from the environment / .env file
- logging: Namespaced loggers and log helpers
- exceptions: Fault hierarchy raised by the client
- schemas: Enums and Pydantic models (credentials, tokens, results)
"""

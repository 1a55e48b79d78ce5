"""Configuration, persistence, errors and observability shared by the service."""

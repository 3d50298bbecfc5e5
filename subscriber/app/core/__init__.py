"""Shared service identity used by structured log events."""

SERVICE_NAME = "subscriber"

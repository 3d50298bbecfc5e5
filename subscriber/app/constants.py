"""Subscriber-level constants shared across modules."""
from __future__ import annotations


class BACKEND:
    RABBITMQ = "rabbitmq"
    PUBSUB = "pubsub"
    INMEMORY = "inmemory"
    MONGO = "mongo"
    LOG = "log"


class PIPELINE_STATE:
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

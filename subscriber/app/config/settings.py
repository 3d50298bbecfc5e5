from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    subscription_backend: str = Field("rabbitmq", validation_alias="SUBSCRIPTION_BACKEND")
    processing_backend: str = Field("log", validation_alias="PROCESSING_BACKEND")

    # Acknowledgement batching: flush on whichever of size or delay is hit first.
    max_batch_size: int = Field(1000, validation_alias="MAX_BATCH_SIZE")
    max_batch_delay_seconds: float = Field(60.0, validation_alias="MAX_BATCH_DELAY_SECONDS")
    max_pending_batches: int = Field(1, validation_alias="MAX_PENDING_BATCHES")
    branch_buffer_size: int = Field(1000, validation_alias="BRANCH_BUFFER_SIZE")
    fail_on_ack_error: bool = Field(False, validation_alias="FAIL_ON_ACK_ERROR")

    database_host: str = Field("localhost", validation_alias="DATABASE_HOST")
    database_port: int = Field(27017, validation_alias="DATABASE_PORT")
    database_user: str = Field("", validation_alias="DATABASE_USER")
    database_password: str = Field("", validation_alias="DATABASE_PASSWORD")
    database_name: str = Field("subscriber", validation_alias="DATABASE_NAME")
    database_collection: str = Field("received_messages", validation_alias="DATABASE_COLLECTION")
    database_connection_timeout_ms: int = Field(5000, validation_alias="DATABASE_CONNECTION_TIMEOUT_MS")

    broker_host: str = Field("localhost", validation_alias="BROKER_HOST")
    broker_port: int = Field(5672, validation_alias="BROKER_PORT")
    broker_user: str = Field("guest", validation_alias="BROKER_USER")
    broker_password: str = Field("guest", validation_alias="BROKER_PASSWORD")
    queue_name: str = Field("subscription_queue", validation_alias="QUEUE_NAME")
    queue_max_length: int = Field(100_000, validation_alias="QUEUE_MAX_LENGTH")
    # Unacked deliveries held by the broker; keep >= MAX_BATCH_SIZE or batches flush on delay only.
    prefetch_count: int = Field(1000, validation_alias="PREFETCH_COUNT")

    pubsub_base_url: str = Field("https://pubsub.googleapis.com", validation_alias="PUBSUB_BASE_URL")
    pubsub_project_id: str = Field("", validation_alias="PUBSUB_PROJECT_ID")
    pubsub_subscription: str = Field("", validation_alias="PUBSUB_SUBSCRIPTION")
    pubsub_topic: str = Field("", validation_alias="PUBSUB_TOPIC")
    pubsub_access_token: str = Field("", validation_alias="PUBSUB_ACCESS_TOKEN")
    pubsub_api_key: str = Field("", validation_alias="PUBSUB_API_KEY")
    pubsub_max_messages: int = Field(100, validation_alias="PUBSUB_MAX_MESSAGES")
    pubsub_request_timeout_seconds: float = Field(30.0, validation_alias="PUBSUB_REQUEST_TIMEOUT_SECONDS")
    pubsub_idle_poll_seconds: float = Field(1.0, validation_alias="PUBSUB_IDLE_POLL_SECONDS")

    inmemory_ack_deadline_seconds: float = Field(120.0, validation_alias="INMEMORY_ACK_DEADLINE_SECONDS")

    initial_backoff_seconds: float = Field(1.0, validation_alias="INITIAL_BACKOFF_SECONDS")
    max_backoff_seconds: float = Field(30.0, validation_alias="MAX_BACKOFF_SECONDS")
    max_connection_attempts: int = Field(10, validation_alias="MAX_CONNECTION_ATTEMPTS")
    backoff_multiplier: float = Field(2.0, validation_alias="BACKOFF_MULTIPLIER")

"""Configuration loading and validation."""

import pytest

from moderation_worker.config import WorkerConfig

ENV_KEYS = [
    "JOB_STORE_TYPE", "DATABASE_URL", "CLASSIFIER_BACKEND", "OPENAI_API_KEY", "BLOB_STORE_TYPE",
    "AWS_S3_BUCKET", "S3_PREFIX", "FRAME_COUNT", "DATA_DIR", "TEMP_DIR", "LOG_DIR", "WORKER_DEV_HTTP",
    "CLASSIFIER_MAX_CONCURRENT", "CLASSIFIER_MIN_CONFIDENCE", "AWS_REGION",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://worker@localhost/moderation")

    config = WorkerConfig.from_env()
    config.validate()

    assert config.JOB_STORE_TYPE == "postgres"
    assert config.CLASSIFIER_BACKEND == "rekognition"
    assert config.CLASSIFIER_CONFIG == {"region": "us-east-1", "min_confidence": 50.0}
    assert config.FRAME_COUNT == 10
    assert config.CLASSIFIER_MAX_CONCURRENT == 5
    assert config.TEMP_DIR == "/app/data/temp"
    assert config.ENABLE_HTTP_SERVER is False
    assert config.blob_store_enabled is False


def test_s3_blob_store_settings(monkeypatch) -> None:
    monkeypatch.setenv("JOB_STORE_TYPE", "memory")
    monkeypatch.setenv("BLOB_STORE_TYPE", "s3")
    monkeypatch.setenv("AWS_S3_BUCKET", "uploads-bucket")
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    monkeypatch.setenv("S3_PREFIX", "videos/")

    config = WorkerConfig.from_env()
    config.validate()

    assert config.blob_store_enabled is True
    assert config.BLOB_STORE_CONFIG == {"bucket": "uploads-bucket", "region": "eu-west-1", "prefix": "videos/"}


def test_data_dir_drives_derived_paths(monkeypatch) -> None:
    monkeypatch.setenv("DATA_DIR", "/srv/worker")
    monkeypatch.setenv("WORKER_DEV_HTTP", "TRUE")

    config = WorkerConfig.from_env()

    assert config.TEMP_DIR == "/srv/worker/temp"
    assert config.LOG_DIR == "/srv/worker/worker"
    assert config.ENABLE_HTTP_SERVER is True


def test_missing_database_url() -> None:
    config = WorkerConfig.from_env()

    with pytest.raises(ValueError, match="DATABASE_URL"):
        config.validate()


def test_missing_bucket(monkeypatch) -> None:
    monkeypatch.setenv("JOB_STORE_TYPE", "memory")
    monkeypatch.setenv("BLOB_STORE_TYPE", "s3")

    with pytest.raises(ValueError, match="AWS_S3_BUCKET"):
        WorkerConfig.from_env().validate()


def test_openai_backend_needs_api_key(monkeypatch) -> None:
    monkeypatch.setenv("JOB_STORE_TYPE", "memory")
    monkeypatch.setenv("CLASSIFIER_BACKEND", "openai")

    config = WorkerConfig.from_env()
    assert config.CLASSIFIER_CONFIG["model"] == "gpt-4o"

    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        config.validate()


@pytest.mark.parametrize("key, value", [
    ("JOB_STORE_TYPE", "mongodb"),
    ("CLASSIFIER_BACKEND", "clip"),
    ("BLOB_STORE_TYPE", "gcs"),
])
def test_unsupported_backends(monkeypatch, key: str, value: str) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://worker@localhost/moderation")
    monkeypatch.setenv(key, value)

    with pytest.raises(ValueError, match="Unsupported"):
        WorkerConfig.from_env().validate()


def test_frame_count_must_be_positive(monkeypatch) -> None:
    monkeypatch.setenv("JOB_STORE_TYPE", "memory")
    monkeypatch.setenv("FRAME_COUNT", "0")

    with pytest.raises(ValueError, match="FRAME_COUNT"):
        WorkerConfig.from_env().validate()

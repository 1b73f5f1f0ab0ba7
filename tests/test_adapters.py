"""Classifier and blob store adapters against stubbed clients."""

import json
from types import SimpleNamespace

import boto3
import httpx
import openai
import pytest
from botocore.stub import Stubber

from moderation_worker.adapters.openai_adapter import OpenAIVisionLabelDetector
from moderation_worker.adapters.rekognition_adapter import RekognitionLabelDetector
from moderation_worker.adapters.s3_adapter import S3BlobStore
from moderation_worker.errors import ClassificationError
from moderation_worker.models import ModerationLabel

IMAGE = b"\xff\xd8\xff\xe0jpeg"


def _aws_client(service: str):
    return boto3.client(
        service,
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def rekognition():
    client = _aws_client("rekognition")
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


@pytest.fixture
def s3():
    client = _aws_client("s3")
    with Stubber(client) as stubber:
        yield client, stubber


def test_rekognition_maps_labels(rekognition) -> None:
    client, stubber = rekognition
    stubber.add_response(
        "detect_moderation_labels",
        {
            "ModerationLabels": [
                {"Name": "Violence", "ParentName": "", "Confidence": 91.5},
                {"Name": "Graphic Violence", "ParentName": "Violence", "Confidence": 88.25},
            ]
        },
        {"Image": {"Bytes": IMAGE}, "MinConfidence": 50.0},
    )

    labels = RekognitionLabelDetector(client=client).detect_labels(IMAGE)

    assert labels == [
        ModerationLabel("Violence", 91.5, parent=None),
        ModerationLabel("Graphic Violence", 88.25, parent="Violence"),
    ]


def test_rekognition_throttling_is_retryable(rekognition) -> None:
    client, stubber = rekognition
    stubber.add_client_error("detect_moderation_labels", service_error_code="ThrottlingException")

    with pytest.raises(ClassificationError) as excinfo:
        RekognitionLabelDetector(client=client).detect_labels(IMAGE)

    assert excinfo.value.throttled is True


def test_rekognition_bad_image_is_not_retryable(rekognition) -> None:
    client, stubber = rekognition
    stubber.add_client_error("detect_moderation_labels", service_error_code="InvalidImageFormatException")

    with pytest.raises(ClassificationError) as excinfo:
        RekognitionLabelDetector(client=client).detect_labels(IMAGE)

    assert excinfo.value.throttled is False


def test_s3_delete(s3) -> None:
    client, stubber = s3
    stubber.add_response("delete_object", {}, {"Bucket": "uploads", "Key": "videos/clip.mp4"})

    S3BlobStore("uploads", client=client).delete("videos/clip.mp4")

    stubber.assert_no_pending_responses()


def test_s3_presigned_url() -> None:
    url = S3BlobStore("uploads", client=_aws_client("s3")).get_url("videos/clip.mp4", expires_in=600)

    assert "uploads" in url
    assert "videos/clip.mp4" in url
    assert "Expires=600" in url or "X-Amz-Expires=600" in url


def _openai_client(content=None, error=None):
    def create(**kwargs):
        if error is not None:
            raise error
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def test_openai_detections_become_labels() -> None:
    content = json.dumps({
        "detections": [
            {"category": "Violence", "label": "Graphic Violence", "confidence": 82},
            {"category": "Suggestive", "label": "Revealing Clothes", "confidence": 31},
            {"category": "Spam", "label": "Watermark", "confidence": 95},
        ]
    })
    detector = OpenAIVisionLabelDetector(client=_openai_client(content))

    assert detector.detect_labels(IMAGE) == [ModerationLabel("Graphic Violence", 82, parent="Violence")]


def test_openai_rate_limit_is_retryable() -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    error = openai.RateLimitError("Rate limit reached", response=httpx.Response(429, request=request), body=None)
    detector = OpenAIVisionLabelDetector(client=_openai_client(error=error))

    with pytest.raises(ClassificationError) as excinfo:
        detector.detect_labels(IMAGE)

    assert excinfo.value.throttled is True


def test_openai_unreadable_response() -> None:
    detector = OpenAIVisionLabelDetector(client=_openai_client("not json"))

    with pytest.raises(ClassificationError):
        detector.detect_labels(IMAGE)


def test_openai_schema_is_strict() -> None:
    detector = OpenAIVisionLabelDetector(client=_openai_client("{}"))

    assert detector._schema["additionalProperties"] is False

"""Unit tests for configuration Pydantic models."""

import pytest
from pydantic import ValidationError

from s3_sink.config.models import (
    MIN_PART_SIZE,
    FormatConfig,
    FormatType,
    KafkaConfig,
    PartitionerConfig,
    PartitionerType,
    RotationConfig,
    S3Config,
    SinkTaskConfig,
)


class TestS3Config:
    def test_defaults(self):
        cfg = S3Config(bucket="b")
        assert cfg.region == "us-east-1"
        assert cfg.part_size == 25 * 1024 * 1024
        assert cfg.url == "s3://b"

    def test_part_size_minimum(self):
        with pytest.raises(ValidationError):
            S3Config(bucket="b", part_size=MIN_PART_SIZE - 1)

    def test_credentials_must_be_paired(self):
        with pytest.raises(ValidationError, match="set together"):
            S3Config(bucket="b", access_key_id="AKIA")

    def test_secret_is_hidden(self):
        cfg = S3Config(bucket="b", access_key_id="AKIA", secret_access_key="s3cret")
        assert cfg.secret_access_key.get_secret_value() == "s3cret"
        assert "s3cret" not in repr(cfg)
        assert "s3cret" not in cfg.model_dump_json()

    def test_kms_key_requires_kms_algorithm(self):
        with pytest.raises(ValidationError, match="aws:kms"):
            S3Config(bucket="b", sse_algorithm="AES256", sse_kms_key_id="key")

    def test_frozen(self):
        cfg = S3Config(bucket="b")
        with pytest.raises(ValidationError):
            cfg.bucket = "other"


class TestFormatConfig:
    def test_defaults(self):
        cfg = FormatConfig()
        assert cfg.format_type == FormatType.JSON
        assert cfg.compression == "none"

    def test_gzip_only_for_stream_formats(self):
        FormatConfig(format_type=FormatType.BYTEARRAY, compression="gzip")
        with pytest.raises(ValidationError, match="only applies"):
            FormatConfig(format_type=FormatType.AVRO, compression="gzip")


class TestPartitionerConfig:
    def test_field_requires_names(self):
        with pytest.raises(ValidationError, match="field_names"):
            PartitionerConfig(partitioner_type=PartitionerType.FIELD)

    def test_time_based_requires_format_and_duration(self):
        with pytest.raises(ValidationError, match="path_format"):
            PartitionerConfig(partitioner_type="time_based", partition_duration_ms=1000)
        with pytest.raises(ValidationError, match="partition_duration_ms"):
            PartitionerConfig(partitioner_type="time_based", path_format="%Y")

    def test_hourly_needs_nothing_else(self):
        cfg = PartitionerConfig(partitioner_type="hourly", timezone="Europe/Berlin")
        assert cfg.partitioner_type == PartitionerType.HOURLY

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError, match="Unknown timezone"):
            PartitionerConfig(timezone="Mars/Olympus")


class TestRotationConfig:
    def test_time_triggers_disabled_by_default(self):
        cfg = RotationConfig()
        assert cfg.flush_size == 1000
        assert cfg.rotate_interval_ms == -1
        assert cfg.rotate_schedule_interval_ms == -1

    def test_flush_size_positive(self):
        with pytest.raises(ValidationError):
            RotationConfig(flush_size=0)


class TestKafkaConfig:
    def test_sasl_requires_credentials(self):
        with pytest.raises(ValidationError, match="sasl_username"):
            KafkaConfig(sasl_mechanism="PLAIN")

    def test_converters_validated(self):
        with pytest.raises(ValidationError):
            KafkaConfig(value_converter="protobuf")


class TestSinkTaskConfig:
    def test_requires_s3(self):
        with pytest.raises(ValidationError):
            SinkTaskConfig()

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError):
            SinkTaskConfig(s3={"bucket": "b"}, bukket="typo")

    def test_invalid_topic_name(self):
        with pytest.raises(ValidationError, match="Invalid topic"):
            SinkTaskConfig(s3={"bucket": "b"}, topics=["bad topic"])

    def test_topics_dir_slashes_stripped(self):
        cfg = SinkTaskConfig(s3={"bucket": "b"}, topics_dir="/data/topics/")
        assert cfg.topics_dir == "data/topics"

    def test_plain_values_flattened(self):
        cfg = SinkTaskConfig(
            s3={"bucket": "b", "access_key_id": "AKIA", "secret_access_key": "s3cret"},
            partitioner={"partitioner_type": "field", "field_names": ["region"]},
        )
        flat = cfg.plain_values()
        assert flat["partitioner.field_names"] == ["region"]
        assert flat["directory_delim"] == "/"
        assert flat["s3.bucket"] == "b"
        assert "s3cret" not in str(flat)

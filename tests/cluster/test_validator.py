"""
Admission validation tests.
"""

import pytest

from mdrunner.cluster import (
    AdmissionValidator,
    AdvisoryThresholds,
    DEFAULT_CATALOG,
    ResourceRequest,
    format_walltime,
    parse_memory_gb,
    validate,
    validate_job_name,
    walltime_to_hours,
)


def make_request(**overrides) -> ResourceRequest:
    values = dict(cores=24, memory_gb=48, walltime="04:00:00", partition="amilan", qos="normal")
    values.update(overrides)
    return ResourceRequest(**values)


# =============================================================================
# Parsing helpers
# =============================================================================


class TestWalltimeParsing:

    @pytest.mark.parametrize("text,hours", [
        ("04:00:00", 4.0),
        ("00:30:00", 0.5),
        ("168:00:00", 168.0),
        ("1-12:00:00", 36.0),
        ("00:00:36", 0.01),
    ])
    def test_valid(self, text, hours):
        assert walltime_to_hours(text) == pytest.approx(hours)

    @pytest.mark.parametrize("text", ["4h", "04:00", "04:61:00", "", "abc", None])
    def test_invalid(self, text):
        assert walltime_to_hours(text) is None

    def test_format(self):
        assert format_walltime(1.5) == "01:30:00"
        assert format_walltime(168) == "168:00:00"


class TestMemoryParsing:

    @pytest.mark.parametrize("value,gb", [
        (48, 48.0),
        (12.5, 12.5),
        ("48", 48.0),
        ("48GB", 48.0),
        ("48G", 48.0),
        ("512MB", 0.5),
        ("3840M", 3.75),
        ("2TB", 2048.0),
    ])
    def test_valid(self, value, gb):
        assert parse_memory_gb(value) == pytest.approx(gb)

    @pytest.mark.parametrize("value", ["lots", "", None, True])
    def test_invalid(self, value):
        assert parse_memory_gb(value) is None


# =============================================================================
# Validation
# =============================================================================


class TestValidRequests:

    def test_baseline_is_clean(self):
        result = validate(make_request())

        assert result.is_valid
        assert result.issues == []
        assert result.warnings == []
        assert result.suggestions == []

    @pytest.mark.parametrize("cores", [1, 16, 32, 64])
    def test_memory_at_ceiling_is_valid(self, cores):
        """memory <= cores x max-per-core passes when everything else does."""
        result = validate(make_request(cores=cores, memory_gb=cores * 3.75))

        assert result.is_valid


class TestBlockingIssues:

    def test_cores_over_partition_limit(self):
        result = validate(make_request(cores=65))

        assert not result.is_valid
        assert "Cores (65) exceeds partition limit (64)" in result.issues
        assert result.field_errors["cores"] == "Cores (65) exceeds partition limit (64)"

    @pytest.mark.parametrize("partition,cores", [("amilan", 100), ("atesting", 17), ("acompile", 5)])
    def test_issue_names_both_values(self, partition, cores):
        qos = DEFAULT_CATALOG.qos_for_partition(partition)[0].id
        limit = DEFAULT_CATALOG.get_partition(partition).max_cores

        result = validate(make_request(cores=cores, partition=partition, qos=qos, walltime="00:30:00"))

        issue = next(i for i in result.issues if i.startswith("Cores"))
        assert str(cores) in issue
        assert str(limit) in issue

    def test_memory_over_ceiling(self):
        result = validate(make_request(cores=10, memory_gb=40))

        assert "Memory (40GB) exceeds limit for 10 cores (37.5GB)" in result.issues

    def test_walltime_over_qos(self):
        result = validate(make_request(walltime="48:00:00"))

        assert "Walltime (48h) exceeds QOS limit (24h)" in result.issues

    def test_mem_qos_requires_256gb(self):
        result = validate(make_request(cores=32, memory_gb=128, partition="amem", qos="mem"))

        assert "mem QOS requires at least 256GB memory" in result.issues

    def test_qos_partition_mismatch(self):
        result = validate(make_request(qos="testing", walltime="00:30:00"))

        assert 'QOS "testing" is not valid for partition "amilan"' in result.issues

    def test_unknown_partition_short_circuits(self):
        result = validate(make_request(partition="bogus", cores=9999))

        assert not result.is_valid
        assert result.issues == ["Unknown partition: bogus"]
        assert result.warnings == []

    def test_unknown_partition_and_qos(self):
        result = validate(make_request(partition="bogus", qos="fast"))

        assert result.issues == ["Unknown partition: bogus", "Unknown QOS: fast"]

    def test_all_issues_are_collected(self):
        result = validate(make_request(cores=200, memory_gb=1000, walltime="100:00:00", qos="testing"))

        assert len(result.issues) == 4
        assert set(result.field_errors) == {"cores", "memory", "walltime", "qos"}


class TestInputSanity:
    """Bad input becomes issues, never exceptions."""

    def test_zero_and_negative_values(self):
        result = validate(make_request(cores=-4, memory_gb=0, walltime="00:00:00"))

        assert "Cores must be greater than 0" in result.issues
        assert "Memory must be greater than 0" in result.issues
        assert "Walltime must be greater than 0" in result.issues

    def test_bad_walltime_format(self):
        result = validate(make_request(walltime="4 hours"))

        assert "Invalid walltime format: 4 hours (expected HH:MM:SS)" in result.issues

    def test_missing_fields(self):
        result = validate(ResourceRequest.unknown())

        assert not result.is_valid
        assert "Walltime is required" in result.issues
        assert "Unknown partition: None" in result.issues


class TestAdvice:

    def test_small_core_warning(self):
        result = validate(make_request(cores=8, memory_gb=16))

        assert result.is_valid
        assert result.warnings == ["Small core count may have longer queue times"]

    def test_high_core_partition_with_few_cores(self):
        result = validate(make_request(cores=32, memory_gb=32, partition="amilan128c"))

        assert "Consider amilan partition for jobs under 64 cores" in result.warnings

    def test_long_run_suggestion_under_normal_qos(self):
        thresholds = AdvisoryThresholds(long_run_hint_hours=12)
        catalog = DEFAULT_CATALOG.with_thresholds(thresholds)

        result = validate(make_request(walltime="20:00:00"), catalog)

        assert "Consider long QOS for runs over 12 hours" in result.suggestions

    def test_long_run_not_suggested_under_long_qos(self):
        result = validate(make_request(walltime="72:00:00", qos="long"))

        assert result.is_valid
        assert result.suggestions == []

    def test_memory_reduction_suggestion(self):
        result = validate(make_request(cores=32, memory_gb=300, partition="amem", qos="mem"))

        assert result.is_valid
        assert "Consider reducing memory to ~64GB for better efficiency" in result.suggestions

    def test_advice_never_affects_validity(self):
        result = validate(make_request(cores=14, memory_gb=300, partition="amem", qos="mem"))

        assert result.is_valid
        assert result.warnings
        assert result.suggestions


class TestJobName:

    @pytest.mark.parametrize("name", ["equil", "prod-run_2", "A" * 64])
    def test_valid(self, name):
        assert validate_job_name(name).is_valid

    @pytest.mark.parametrize("name", ["", "   ", None, "has space", "semi;colon", "A" * 65])
    def test_invalid(self, name):
        result = validate_job_name(name)

        assert not result.is_valid
        assert "job_name" in result.field_errors

    def test_validator_merges_name_and_request(self):
        result = AdmissionValidator().validate_job("bad name", make_request(cores=100))

        assert set(result.field_errors) == {"job_name", "cores"}

    def test_to_dict(self):
        data = validate(make_request(cores=8, memory_gb=16)).to_dict()

        assert data == {
            "is_valid": True,
            "issues": [],
            "warnings": ["Small core count may have longer queue times"],
            "suggestions": [],
            "field_errors": {},
        }

"""
Tests for the sandbox data model.
"""

import pytest

from codebox.api.models import ExecuteBody
from codebox.core.errors import ValidationError
from codebox.core.models import (
    ENTRYPOINT_FILES,
    Artifact,
    ExecutionRequest,
    ExecutionResult,
    Language,
    NetworkPolicy,
    ResourceLimits,
    SandboxSession,
    SessionStatus,
)


class TestLanguage:
    """Tests for language parsing."""

    @pytest.mark.parametrize("raw,expected", [
        ("python", Language.PYTHON),
        ("py", Language.PYTHON),
        ("Python", Language.PYTHON),
        ("node", Language.NODE),
        ("nodejs", Language.NODE),
        ("javascript", Language.NODE),
        ("js", Language.NODE),
        ("web", Language.WEB),
    ])
    def test_aliases(self, raw, expected):
        """Accepted spellings normalize to a canonical language."""
        assert Language.parse(raw) == expected

    @pytest.mark.parametrize("raw", ["ruby", "", None, 3])
    def test_rejects_unknown(self, raw):
        """Unknown or missing languages are a validation error."""
        with pytest.raises(ValidationError):
            Language.parse(raw)

    def test_web_is_not_executable(self):
        """Only languages with an entry point can run code."""
        assert Language.PYTHON.executable
        assert Language.NODE.executable
        assert not Language.WEB.executable

    def test_entrypoints(self):
        """Canonical entry-point names."""
        assert ENTRYPOINT_FILES[Language.PYTHON] == "main.py"
        assert ENTRYPOINT_FILES[Language.NODE] == "main.js"


class TestNetworkPolicy:
    """Tests for network policy parsing."""

    def test_default_is_none(self):
        assert NetworkPolicy.parse(None) == NetworkPolicy.NONE

    def test_parse_case_insensitive(self):
        assert NetworkPolicy.parse("INTERNAL") == NetworkPolicy.INTERNAL

    def test_rejects_unknown(self):
        with pytest.raises(ValidationError, match="network policy"):
            NetworkPolicy.parse("host")


class TestResourceLimits:
    """Tests for resource limits."""

    def test_defaults(self):
        """Defaults are half a CPU, 256M and 30 seconds."""
        limits = ResourceLimits()
        assert limits.cpu == "0.5"
        assert limits.memory == "256M"
        assert limits.timeout == 30000
        assert limits.disk_space is None

    def test_merged_overrides(self):
        """Wire-format overrides replace only the given fields."""
        limits = ResourceLimits().merged({"memory": "512M", "diskSpace": "100M"})
        assert limits.memory == "512M"
        assert limits.disk_space == "100M"
        assert limits.cpu == "0.5"

    def test_merged_does_not_mutate(self):
        base = ResourceLimits()
        base.merged({"timeout": 5000})
        assert base.timeout == 30000

    def test_unknown_key(self):
        with pytest.raises(ValidationError, match="Unknown resource limit"):
            ResourceLimits().merged({"gpu": 1})

    @pytest.mark.parametrize("overrides", [
        {"timeout": 0},
        {"timeout": -5},
        {"timeout": "10"},
        {"timeout": True},
        {"cpu": "lots"},
        {"cpu": "0"},
        {"memory": "a lot"},
        {"cpu": "nan"},
        {"cpu": "inf"},
        {"cpu": float("inf")},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValidationError):
            ResourceLimits().merged(overrides)

    @pytest.mark.parametrize("size", ["0", "0M", "0.0g", "00"])
    def test_zero_memory_rejected(self, size):
        """A zero memory limit would leave the container uncapped."""
        with pytest.raises(ValidationError, match="must be positive"):
            ResourceLimits().merged({"memory": size})

    def test_zero_disk_space_rejected(self):
        with pytest.raises(ValidationError, match="must be positive"):
            ResourceLimits().merged({"diskSpace": "0M"})

    def test_fractional_memory_allowed(self):
        assert ResourceLimits().merged({"memory": "0.5g"}).memory == "0.5g"

    def test_to_dict_roundtrip(self):
        limits = ResourceLimits(cpu="1", memory="1G", timeout=1000, disk_space="50M")
        assert limits.to_dict() == {"cpu": "1", "memory": "1G", "timeout": 1000, "diskSpace": "50M"}
        assert ResourceLimits.from_dict(limits.to_dict()) == limits


class TestSandboxSession:
    """Tests for session serialization."""

    def test_to_dict_camel_case(self):
        session = SandboxSession(
            id="abc",
            user_id=7,
            language=Language.PYTHON,
            resource_limits=ResourceLimits(),
        )
        data = session.to_dict()
        assert data["id"] == "abc"
        assert data["userId"] == 7
        assert data["status"] == SessionStatus.CREATING.value
        assert data["networkPolicy"] == "none"
        assert data["containerId"] is None
        assert data["resourceLimits"]["memory"] == "256M"
        assert data["live"] is True

    def test_summary(self):
        session = SandboxSession(
            id="abc",
            user_id=0,
            language=Language.NODE,
            resource_limits=ResourceLimits(),
            status=SessionStatus.RUNNING,
        )
        summary = session.summary()
        assert summary["language"] == "node"
        assert summary["status"] == "running"
        assert "userId" not in summary


class TestExecutionRequest:
    """Tests for execution request validation."""

    def test_requires_code(self):
        with pytest.raises(ValidationError, match="code is required"):
            ExecutionRequest(language=Language.PYTHON, code="   ")

    def test_rejects_bad_timeout(self):
        with pytest.raises(ValidationError):
            ExecutionRequest(language=Language.PYTHON, code="print(1)", timeout_ms=0)

    def test_rejects_non_string_env(self):
        with pytest.raises(ValidationError):
            ExecutionRequest(language=Language.PYTHON, code="print(1)", env={"A": 1})

    @pytest.mark.parametrize("env", [
        {"A": "x\x00y"},
        {"A\x00B": "x"},
        {"A=B": "x"},
        {"": "x"},
    ])
    def test_rejects_unspawnable_env(self, env):
        with pytest.raises(ValidationError):
            ExecutionRequest(language=Language.PYTHON, code="print(1)", env=env)

    def test_env_body_rejects_nul(self):
        with pytest.raises(ValidationError, match="NUL"):
            ExecuteBody.from_dict({"language": "python", "code": "print(1)", "env": {"A": "x\x00y"}})


class TestExecutionResult:
    """Tests for execution result serialization."""

    def test_to_dict(self):
        artifact = Artifact(
            id="a1",
            session_id="s1",
            file_path="out.txt",
            file_type="txt",
            file_size=3,
            checksum="00",
            storage_path="/tmp/out.txt",
        )
        result = ExecutionResult(
            success=True,
            session_id="s1",
            output="hi\n",
            exit_code=0,
            duration_ms=12,
            artifacts=[artifact],
        )
        data = result.to_dict()
        assert data["success"] is True
        assert data["sessionId"] == "s1"
        assert data["exitCode"] == 0
        assert data["executionTime"] == 12
        assert data["timedOut"] is False
        assert data["artifacts"][0]["filePath"] == "out.txt"
        assert data["artifacts"][0]["fileSize"] == 3

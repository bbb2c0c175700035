"""
API Models for Codebox

Request bodies are parsed into dataclasses here; anything malformed raises
ValidationError, which the server maps to HTTP 400.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from codebox.core.errors import ValidationError
from codebox.core.models import AuxFile, ExecutionRequest, Language, validate_env


def _parse_code(data: Dict[str, Any]) -> str:
    code = data.get("code")
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("code is required")
    return code


def _parse_timeout(data: Dict[str, Any]) -> Optional[int]:
    timeout = data.get("timeout")
    if timeout is None:
        return None
    if isinstance(timeout, bool) or not isinstance(timeout, int):
        raise ValidationError("timeout must be an integer number of milliseconds")
    if timeout <= 0:
        raise ValidationError("timeout must be positive")
    return timeout


def _parse_files(data: Dict[str, Any]) -> List[AuxFile]:
    raw = data.get("files")
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("files must be a list of {path, content} objects")

    files = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValidationError("files must be a list of {path, content} objects")
        path = entry.get("path")
        content = entry.get("content", "")
        if not isinstance(path, str) or not path.strip():
            raise ValidationError("each file needs a path")
        if not isinstance(content, str):
            raise ValidationError(f"content of {path} must be a string")
        files.append(AuxFile(path=path, content=content))
    return files


def _parse_env(data: Dict[str, Any]) -> Dict[str, str]:
    raw = data.get("env")
    if raw is None:
        return {}
    return validate_env(raw)


@dataclass
class ExecuteBody:
    """POST /sandbox/execute"""
    language: Language
    code: str
    timeout: Optional[int] = None
    files: List[AuxFile] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecuteBody":
        return cls(
            language=Language.parse(data.get("language")),
            code=_parse_code(data),
            timeout=_parse_timeout(data),
            files=_parse_files(data),
            env=_parse_env(data),
        )

    def to_request(self) -> ExecutionRequest:
        return ExecutionRequest(
            language=self.language,
            code=self.code,
            files=self.files,
            timeout_ms=self.timeout,
            env=self.env,
        )


@dataclass
class SessionExecuteBody:
    """POST /sandbox/session/{id}/execute"""
    code: str
    timeout: Optional[int] = None
    files: List[AuxFile] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionExecuteBody":
        return cls(
            code=_parse_code(data),
            timeout=_parse_timeout(data),
            files=_parse_files(data),
            env=_parse_env(data),
        )


@dataclass
class CreateSessionBody:
    """POST /sandbox/session"""
    language: Language
    resource_limits: Optional[Dict[str, Any]] = None
    network_policy: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreateSessionBody":
        limits = data.get("resourceLimits")
        if limits is not None and not isinstance(limits, dict):
            raise ValidationError("resourceLimits must be an object")
        return cls(
            language=Language.parse(data.get("language")),
            resource_limits=limits,
            network_policy=data.get("networkPolicy"),
        )


@dataclass
class WriteFileBody:
    """PUT /sandbox/session/{id}/files/{path}"""
    content: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WriteFileBody":
        content = data.get("content")
        if not isinstance(content, str):
            raise ValidationError("content must be a string")
        return cls(content=content)

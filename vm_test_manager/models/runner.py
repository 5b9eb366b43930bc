"""Pydantic models for the guest test runner's HTTP API."""

from collections.abc import Sequence

from pydantic import BaseModel

from vm_test_manager.models.config import OsType


class HealthResponse(BaseModel):
    """Response from the health endpoint."""

    status: str


class OsInfo(BaseModel):
    """Operating system the runner reports."""

    os: OsType
    version: str


class AppVersion(BaseModel):
    """Version of the installed app."""

    version: str


class ExecRequest(BaseModel):
    """Run a program in the guest."""

    path: str
    args: Sequence[str] = ()


class ExecResult(BaseModel):
    """Outcome of a program run in the guest."""

    code: int
    stdout: str = ""
    stderr: str = ""


class HttpGetRequest(BaseModel):
    """Fetch a URL from inside the guest, optionally through a proxy."""

    url: str
    proxy: str | None = None


class HttpGetResult(BaseModel):
    """Response seen by the guest."""

    status: int
    body: str = ""

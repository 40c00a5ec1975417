"""Shared pytest fixtures for testing."""

import json
from typing import Any, Dict, Iterable, List, Optional

import pytest
from pydantic import BaseModel, Field

from homogenaize.config import Settings


@pytest.fixture
def settings() -> Settings:
    """Settings with fake credentials and default endpoints."""
    return Settings(
        openai_api_key="sk-test",
        anthropic_api_key="sk-ant-test",
        gemini_api_key="gm-test",
        request_timeout_seconds=5.0,
    )


# =============================================================================
# Schemas
# =============================================================================


class Address(BaseModel):
    street: str
    city: str
    zip_code: Optional[str] = None


class Employee(BaseModel):
    name: str
    age: int
    address: Address
    skills: List[str] = Field(default_factory=list, min_length=1)


class Company(BaseModel):
    name: str
    employees: List[Employee]
    headquarters: Address


@pytest.fixture
def company_payload() -> Dict[str, Any]:
    return {
        "name": "Acme",
        "employees": [
            {
                "name": "Ada",
                "age": 36,
                "address": {"street": "1 Loop Rd", "city": "London", "zip_code": "N1"},
                "skills": ["math", "engines"],
            },
        ],
        "headquarters": {"street": "2 Main St", "city": "Springfield", "zip_code": None},
    }


# =============================================================================
# Stream helpers
# =============================================================================


def sse(events: Iterable[Any]) -> bytes:
    """Encode events as ``data:`` lines."""
    lines = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode("utf-8")


class FakeStreamHandle:
    """Stream handle yielding predefined chunks."""

    def __init__(self, chunks: Iterable[bytes], status: int = 200):
        self.chunks = list(chunks)
        self.status = status
        self.headers: Dict[str, str] = {}
        self.closed = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    async def iter_bytes(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def company_schema():
    return Company


@pytest.fixture
def encode_sse():
    return sse


@pytest.fixture
def stream_handle():
    return FakeStreamHandle

"""Unit tests for base domain models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from deployer.domain.models.base import (
    DomainEntity,
    generate_id,
    utc_now,
    ValueObject,
)


class TestGenerateId:
    def test_returns_string(self) -> None:
        assert isinstance(generate_id(), str)

    def test_unique(self) -> None:
        ids = {generate_id() for _ in range(100)}
        assert len(ids) == 100


class TestUtcNow:
    def test_returns_aware_datetime(self) -> None:
        assert utc_now().tzinfo is not None


class TestDomainEntity:
    def test_defaults(self) -> None:
        entity = DomainEntity()
        assert entity.revision == 1
        assert entity.id is not None
        assert entity.created_at is not None

    def test_touch(self) -> None:
        entity = DomainEntity()
        before = entity.updated_at
        entity.touch()
        assert entity.revision == 2
        assert entity.updated_at >= before


class TestValueObject:
    def test_immutable(self) -> None:
        class Endpoint(ValueObject):
            host: str
            port: int

        endpoint = Endpoint(host="registry", port=5000)
        with pytest.raises(ValidationError):
            endpoint.port = 443  # type: ignore[misc]

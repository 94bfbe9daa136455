"""Shared fixtures for unit tests."""

from __future__ import annotations

import pytest

from dataset_operator.config import ControllerConfig, KubeConfig
from tests.fakes import FakeObjectStore


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def controller_config() -> ControllerConfig:
    return ControllerConfig()


@pytest.fixture
def kube_config() -> KubeConfig:
    return KubeConfig()

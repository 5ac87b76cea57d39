"""Shared fixtures: a two-window fake workspace and a coordinator over it."""

import pytest

from tests.helpers import ENGINE_PAYLOAD, FakeWorkspace
from tikzview.coordinator import TikzCoordinator
from tikzview.settings import TikzViewSettings


@pytest.fixture
def workspace():
    return FakeWorkspace(count=2)


@pytest.fixture
def settings():
    return TikzViewSettings()


@pytest.fixture
def coordinator(workspace, settings):
    return TikzCoordinator(workspace, ENGINE_PAYLOAD, settings)

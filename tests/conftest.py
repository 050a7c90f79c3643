import os
from typing import Generator
from unittest.mock import Mock

import pytest
import yaml

from tests.fake.fake_engine import FakeEngine
from tests.helpers import FakeKVSpacesConfig

from kvspaces.bootstrap.config.settings import KVSpacesConfig
from kvspaces.core.models.keyspace import KeyspaceDescriptor
from kvspaces.infra.lmdb_engine.engine import LMDBEngine
from kvspaces.infra.lmdb_engine.options import EngineOptions


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def closeable():
    return Mock(name="closeable")


@pytest.fixture
def descriptors():
    return [
        KeyspaceDescriptor("default"),
        KeyspaceDescriptor("users"),
        KeyspaceDescriptor("events"),
    ]


@pytest.fixture
def lmdb_engine():
    return LMDBEngine()


@pytest.fixture
def engine_options():
    return EngineOptions(map_size=1 << 22, max_dbs=8, sync=False)


@pytest.fixture
def config_file(tmp_path):
    file = tmp_path / "kvspaces.yaml"

    data = {
        "storage": {
            "path": str(tmp_path / "data"),
            "variant": "ttl",
            "map_size": 1 << 22,
            "max_dbs": 4,
            "sync": False,
        },
        "keyspaces": [
            {"name": "default"},
            {"name": "sessions", "ttl": 60},
        ]
    }

    file.write_text(yaml.dump(data))
    return file


@pytest.fixture
def kvspaces_config(config_file) -> Generator[KVSpacesConfig, None, None]:
    backup = os.environ.copy()

    try:
        os.environ["TEST_KVSPACES_CONFIG"] = str(config_file)
        yield FakeKVSpacesConfig()
    finally:
        os.environ.clear()
        os.environ.update(backup)

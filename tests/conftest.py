import pytest

from kubestrap.config import from_dict

from .fakes import FakeHost


@pytest.fixture
def config():
    return from_dict({'node-ip': '10.0.0.5',
                      'monitoring': {'signoz-endpoint':
                                     'http://signoz.example.com:4318'}})


@pytest.fixture
def fake_host(tmp_path):
    return FakeHost(tmp_path / "root")

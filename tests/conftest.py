import pytest

from mmda_revenue.config import PaymentConfig

from tests.fakes import make_config


@pytest.fixture
def payment_config() -> PaymentConfig:
    return make_config()

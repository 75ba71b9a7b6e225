from unittest.mock import Mock

import pytest

from backend.src.services.auth import (
    LOCAL_DEV_USER_ID,
    AuthError,
    AuthService,
    JWTValidator,
    StaticTokenValidator,
)
from backend.src.services.config import AppConfig


@pytest.fixture
def mock_config():
    config = Mock(spec=AppConfig)
    config.enable_local_mode = True
    config.local_dev_token = "local-test"
    config.jwt_secret_key = "secret-value-of-16+"
    return config


def test_static_token_validator():
    validator = StaticTokenValidator("my-secret", "test-user")

    payload = validator.validate("my-secret")
    assert payload is not None
    assert payload.sub == "test-user"

    assert validator.validate("wrong") is None
    assert validator.validate("") is None


def test_local_token_maps_to_local_user(mock_config):
    auth = AuthService(config=mock_config)

    assert auth.validate_jwt("local-test").sub == LOCAL_DEV_USER_ID

    with pytest.raises(AuthError, match="Invalid authentication credentials"):
        auth.validate_jwt("invalid-token")


def test_strategy_order(mock_config):
    auth = AuthService(config=mock_config)

    assert isinstance(auth.validators[0], StaticTokenValidator)
    assert isinstance(auth.validators[-1], JWTValidator)


def test_local_mode_disabled_skips_static_token(mock_config):
    mock_config.enable_local_mode = False
    auth = AuthService(config=mock_config)

    assert len(auth.validators) == 1
    with pytest.raises(AuthError):
        auth.validate_jwt("local-test")

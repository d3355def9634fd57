"""Shared pytest fixtures for webhook unit tests."""

from unittest.mock import MagicMock

import pytest

from deployment_hpa_validator.observability.health import HealthChecker
from deployment_hpa_validator.observability.metrics import WebhookMetrics
from deployment_hpa_validator.services import CertificateManager, Validator
from deployment_hpa_validator.settings import load_settings
from tests.fixtures.admission import api_hpa_list
from tests.fixtures.certificates import mint_certificate

SETTINGS_ENV_VARS = (
    "ENVIRONMENT",
    "VERSION",
    "PORT",
    "WEBHOOK_PORT",
    "TIMEOUT",
    "WEBHOOK_TIMEOUT",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "SKIP_NAMESPACES",
    "SKIP_LABELS",
    "TLS_CERT_FILE",
    "TLS_KEY_FILE",
    "TLS_CA_FILE",
    "CLUSTER_NAME",
    "FAILURE_POLICY",
)


@pytest.fixture(autouse=True)
def isolated_settings_env(monkeypatch, tmp_path):
    """Keep the developer's environment and configs/ out of settings."""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CONFIG_FILE", str(tmp_path / "absent.yaml"))


@pytest.fixture
def metrics():
    return WebhookMetrics()


@pytest.fixture
def settings_factory():
    def factory(**overrides):
        overrides.setdefault("environment", "development")
        return load_settings(**overrides)

    return factory


@pytest.fixture
def apps_api():
    """apps/v1 API mock; Deployments are not found unless a test says so."""
    from kubernetes.client.rest import ApiException

    api = MagicMock()
    api.read_namespaced_deployment.side_effect = ApiException(status=404, reason="Not Found")
    return api


@pytest.fixture
def autoscaling_api():
    """autoscaling/v2 API mock with no HPAs."""
    api = MagicMock()
    api.list_namespaced_horizontal_pod_autoscaler.return_value = api_hpa_list()
    return api


@pytest.fixture
def validator(apps_api, autoscaling_api, metrics):
    return Validator(
        k8s_client=MagicMock(),
        metrics=metrics,
        apps_api=apps_api,
        autoscaling_api=autoscaling_api,
    )


@pytest.fixture
def certificate_files(tmp_path):
    """A valid serving certificate written to disk."""
    minted = mint_certificate()
    cert_path, key_path = minted.write(tmp_path)
    return minted, cert_path, key_path


@pytest.fixture
def certificate_manager(certificate_files, metrics):
    _, cert_path, key_path = certificate_files
    manager = CertificateManager(str(cert_path), str(key_path), metrics=metrics)
    manager.install(manager.load_certificate())
    return manager


@pytest.fixture
def version_api():
    api = MagicMock()
    api.get_code.return_value = MagicMock(git_version="v1.30.0")
    return api


@pytest.fixture
def health_checker(validator, certificate_manager, version_api, metrics):
    return HealthChecker(
        validator,
        certificate_manager,
        version_api=version_api,
        metrics=metrics,
        version="0.1.0-test",
        environment="development",
    )

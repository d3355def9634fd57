"""
Unit tests for the admission HTTP server.

Requests go through the real aiohttp application via ``aiohttp.test_utils``;
only the Kubernetes API is mocked.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer, unused_port

from deployment_hpa_validator.constants import (
    DEFAULT_SKIP_LABELS,
    MAX_ADMISSION_BODY_BYTES,
    MSG_DEPLOYMENT_WITH_HPA,
    MSG_HPA_WITH_SINGLE_REPLICA,
    SECURITY_HEADERS,
)
from deployment_hpa_validator.webhooks import AdmissionServer
from deployment_hpa_validator.webhooks.server import RESOURCE_TYPE_KEY
from tests.fixtures.admission import (
    admission_review,
    api_deployment,
    api_hpa,
    api_hpa_list,
    deployment_object,
    hpa_object,
)

SKIP_LABEL_KEY, _, SKIP_LABEL_VALUE = DEFAULT_SKIP_LABELS[0].partition("=")
LAST_APPLIED_ANNOTATION = "kubectl.kubernetes.io/last-applied-configuration"


@pytest.fixture
def build_server(validator, certificate_manager, metrics, health_checker, settings_factory):
    def build(**overrides) -> AdmissionServer:
        return AdmissionServer(
            settings_factory(**overrides),
            validator,
            certificate_manager,
            metrics,
            health_checker=health_checker,
        )

    return build


@pytest.fixture
async def client(build_server):
    async with TestClient(TestServer(build_server().app)) as test_client:
        yield test_client


@pytest.fixture
def hpa_on_web(autoscaling_api):
    """An existing HPA targeting Deployment default/web."""
    autoscaling_api.list_namespaced_horizontal_pod_autoscaler.return_value = api_hpa_list(
        api_hpa(target_name="web")
    )


@pytest.fixture
def single_replica_web(apps_api):
    """An existing Deployment default/web with one replica."""
    apps_api.read_namespaced_deployment.side_effect = None
    apps_api.read_namespaced_deployment.return_value = api_deployment(replicas=1)


async def _post_review(client, review) -> dict:
    response = await client.post("/validate", json=review)
    assert response.status == 200
    return await response.json()


class TestValidateEndpoint:
    """POST /validate."""

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("hpa_on_web")
    async def test_single_replica_deployment_with_hpa_is_denied(self, client):
        review = admission_review(deployment_object(replicas=1), "Deployment", uid="uid-1")

        body = await _post_review(client, review)

        assert body["apiVersion"] == "admission.k8s.io/v1"
        assert body["kind"] == "AdmissionReview"
        assert body["response"]["uid"] == "uid-1"
        assert body["response"]["allowed"] is False
        assert body["response"]["status"]["code"] == 400
        assert body["response"]["status"]["message"].startswith(MSG_DEPLOYMENT_WITH_HPA)

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("hpa_on_web")
    async def test_scaled_deployment_with_hpa_is_allowed(self, client):
        review = admission_review(deployment_object(replicas=3), "Deployment", uid="uid-2")

        body = await _post_review(client, review)

        assert body["response"] == {"uid": "uid-2", "allowed": True}

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("single_replica_web")
    async def test_hpa_targeting_single_replica_deployment_is_denied(self, client):
        review = admission_review(hpa_object(), "HorizontalPodAutoscaler")

        body = await _post_review(client, review)

        assert body["response"]["allowed"] is False
        assert body["response"]["status"]["code"] == 400
        assert body["response"]["status"]["message"].startswith(MSG_HPA_WITH_SINGLE_REPLICA)

    @pytest.mark.asyncio
    async def test_hpa_with_missing_target_is_allowed(self, client):
        body = await _post_review(client, admission_review(hpa_object(), "HorizontalPodAutoscaler"))

        assert body["response"]["allowed"] is True

    @pytest.mark.asyncio
    async def test_other_kinds_are_allowed_without_api_calls(self, client, apps_api, autoscaling_api):
        review = admission_review({"metadata": {"name": "db"}}, "StatefulSet")

        body = await _post_review(client, review)

        assert body["response"]["allowed"] is True
        apps_api.read_namespaced_deployment.assert_not_called()
        autoscaling_api.list_namespaced_horizontal_pod_autoscaler.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("hpa_on_web")
    async def test_delete_is_allowed(self, client, autoscaling_api):
        review = admission_review(deployment_object(replicas=1), "Deployment", operation="DELETE")

        body = await _post_review(client, review)

        assert body["response"]["allowed"] is True
        autoscaling_api.list_namespaced_horizontal_pod_autoscaler.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("hpa_on_web")
    async def test_skip_namespace_is_allowed(self, client, autoscaling_api):
        review = admission_review(
            deployment_object(replicas=1, namespace="kube-system"),
            "Deployment",
            namespace="kube-system",
        )

        body = await _post_review(client, review)

        assert body["response"]["allowed"] is True
        autoscaling_api.list_namespaced_horizontal_pod_autoscaler.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("hpa_on_web")
    async def test_skip_label_is_allowed(self, client, autoscaling_api):
        review = admission_review(
            deployment_object(replicas=1, labels={SKIP_LABEL_KEY: SKIP_LABEL_VALUE}),
            "Deployment",
        )

        body = await _post_review(client, review)

        assert body["response"]["allowed"] is True
        autoscaling_api.list_namespaced_horizontal_pod_autoscaler.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("hpa_on_web")
    async def test_scale_down_to_one_replica_is_denied(self, client, autoscaling_api):
        review = admission_review(
            deployment_object(replicas=1),
            "Deployment",
            operation="UPDATE",
            uid="uid-4",
            old_obj=deployment_object(replicas=2),
        )

        body = await _post_review(client, review)

        assert body["response"]["uid"] == "uid-4"
        assert body["response"]["allowed"] is False
        assert body["response"]["status"]["code"] == 400
        assert body["response"]["status"]["message"].startswith(MSG_DEPLOYMENT_WITH_HPA)
        autoscaling_api.list_namespaced_horizontal_pod_autoscaler.assert_called_once()

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("hpa_on_web")
    async def test_update_larger_than_one_mebibyte_is_accepted(self, client):
        annotations = {LAST_APPLIED_ANNOTATION: "x" * 700_000}
        new, old = deployment_object(replicas=3), deployment_object(replicas=3)
        new["metadata"]["annotations"] = annotations
        old["metadata"]["annotations"] = annotations
        review = admission_review(new, "Deployment", operation="UPDATE", uid="uid-5", old_obj=old)
        assert len(json.dumps(review)) > 1024 * 1024

        body = await _post_review(client, review)

        assert body["response"] == {"uid": "uid-5", "allowed": True}

    @pytest.mark.asyncio
    async def test_body_above_limit_is_rejected(self, client, metrics):
        review = admission_review(deployment_object(replicas=3), "Deployment")
        review["request"]["object"]["metadata"]["annotations"] = {
            LAST_APPLIED_ANNOTATION: "x" * (MAX_ADMISSION_BODY_BYTES + 1)
        }

        response = await client.post("/validate", json=review)

        assert response.status == 413
        assert (
            metrics.sample(
                "webhook_requests_total",
                {"method": "POST", "status": "413", "resource_type": "unknown"},
            )
            == 1
        )

    @pytest.mark.asyncio
    async def test_undecodable_object_is_denied_as_internal(self, client):
        review = admission_review("not-an-object", "Deployment", name="web", uid="uid-3")

        body = await _post_review(client, review)

        assert body["response"]["uid"] == "uid-3"
        assert body["response"]["allowed"] is False
        assert body["response"]["status"]["code"] == 500
        assert "Failed to decode Deployment" in body["response"]["status"]["message"]

    @pytest.mark.asyncio
    async def test_negative_replicas_is_undecodable(self, client):
        review = admission_review(deployment_object(replicas=-1), "Deployment")

        body = await _post_review(client, review)

        assert body["response"]["status"]["code"] == 500

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("hpa_on_web")
    async def test_production_keeps_validation_message(self, build_server):
        server = build_server(environment="production")
        review = admission_review(deployment_object(replicas=1), "Deployment")

        async with TestClient(TestServer(server.app)) as client:
            body = await _post_review(client, review)

        assert body["response"]["status"]["message"] == MSG_DEPLOYMENT_WITH_HPA

    @pytest.mark.asyncio
    async def test_production_redacts_internal_errors(self, build_server):
        server = build_server(environment="production")
        review = admission_review("not-an-object", "Deployment", name="web")

        async with TestClient(TestServer(server.app)) as client:
            body = await _post_review(client, review)

        message = body["response"]["status"]["message"]
        assert "Failed to decode" not in message
        assert message == "An internal error occurred. Contact your administrator."

    @pytest.mark.asyncio
    async def test_slow_validation_times_out(self, build_server, validator):
        async def slow(deployment):
            await asyncio.sleep(5)

        validator.validate_deployment = slow
        server = build_server(request_timeout_seconds=0.05)
        review = admission_review(deployment_object(replicas=1), "Deployment")

        async with TestClient(TestServer(server.app)) as client:
            body = await _post_review(client, review)

        assert body["response"]["allowed"] is False
        assert body["response"]["status"]["code"] == 502
        assert "timed out" in body["response"]["status"]["message"]

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_denied_as_internal(self, build_server, validator):
        validator.validate_hpa = AsyncMock(side_effect=RuntimeError("boom"))
        server = build_server()

        async with TestClient(TestServer(server.app)) as client:
            body = await _post_review(client, admission_review(hpa_object(), "HorizontalPodAutoscaler"))

        assert body["response"]["allowed"] is False
        assert body["response"]["status"]["code"] == 500
        assert "boom" in body["response"]["status"]["message"]

    @pytest.mark.asyncio
    async def test_invalid_json_is_bad_request(self, client):
        response = await client.post(
            "/validate", data=b"{not json", headers={"Content-Type": "application/json"}
        )

        assert response.status == 400

    @pytest.mark.asyncio
    async def test_missing_request_is_denied_review(self, client):
        body = await _post_review(
            client, {"apiVersion": "admission.k8s.io/v1", "kind": "AdmissionReview"}
        )

        assert body["kind"] == "AdmissionReview"
        assert body["response"]["uid"] == ""
        assert body["response"]["allowed"] is False
        assert body["response"]["status"]["code"] == 500
        assert "no request" in body["response"]["status"]["message"]

    @pytest.mark.asyncio
    async def test_get_is_method_not_allowed(self, client):
        response = await client.get("/validate")

        assert response.status == 405
        assert response.headers["Allow"] == "POST"

    @pytest.mark.asyncio
    async def test_security_headers_are_set(self, client):
        response = await client.post(
            "/validate", json=admission_review(deployment_object(replicas=2), "Deployment")
        )

        for name, value in SECURITY_HEADERS.items():
            assert response.headers[name] == value


class TestHealthEndpoints:
    """Health check endpoints."""

    @pytest.mark.asyncio
    async def test_healthz_ok(self, client):
        response = await client.get("/healthz")
        body = await response.json()

        assert response.status == 200
        assert body["status"] == "ok"
        assert set(body["components"]) == {"kubernetes", "certificate", "validator", "metrics"}

    @pytest.mark.asyncio
    async def test_healthz_reports_unreachable_api(self, client, version_api):
        version_api.get_code.side_effect = ConnectionRefusedError("refused")

        response = await client.get("/healthz")
        body = await response.json()

        assert response.status == 503
        assert body["status"] == "error"
        assert body["components"]["kubernetes"]["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_health_reports_version(self, client):
        response = await client.get("/health")
        body = await response.json()

        assert response.status == 200
        assert body["status"] == "healthy"
        assert body["version"] == "0.1.0-test"
        assert body["environment"] == "development"

    @pytest.mark.asyncio
    async def test_readyz(self, client):
        response = await client.get("/readyz")
        body = await response.json()

        assert response.status == 200
        assert body["status"] == "ready"
        assert set(body["components"]) == {"kubernetes", "certificate"}

    @pytest.mark.asyncio
    async def test_livez(self, client):
        response = await client.get("/livez")
        body = await response.json()

        assert response.status == 200
        assert body["status"] == "alive"

    @pytest.mark.asyncio
    async def test_disabled_health_endpoints_are_not_routed(self, build_server):
        server = build_server(health_enabled=False)

        async with TestClient(TestServer(server.app)) as client:
            response = await client.get("/healthz")

        assert response.status == 404


class TestMetricsEndpoint:
    @pytest.mark.asyncio
    async def test_metrics_expose_request_counter(self, client, metrics):
        await client.post(
            "/validate", json=admission_review(deployment_object(replicas=2), "Deployment")
        )

        response = await client.get("/metrics")
        text = await response.text()

        assert response.status == 200
        assert "webhook_requests_total" in text
        assert (
            metrics.sample(
                "webhook_requests_total",
                {"method": "POST", "status": "200", "resource_type": "Deployment"},
            )
            == 1
        )

    @pytest.mark.asyncio
    async def test_resource_type_uses_typed_request_key(self, client, metrics, recwarn):
        await _post_review(client, admission_review(hpa_object(), "HorizontalPodAutoscaler"))

        assert isinstance(RESOURCE_TYPE_KEY, web.RequestKey)
        assert not [w for w in recwarn if issubclass(w.category, web.NotAppKeyWarning)]
        assert (
            metrics.sample(
                "webhook_requests_total",
                {"method": "POST", "status": "200", "resource_type": "HorizontalPodAutoscaler"},
            )
            == 1
        )

    @pytest.mark.asyncio
    async def test_disabled_metrics_endpoint_is_not_routed(self, build_server):
        server = build_server(metrics_enabled=False)

        async with TestClient(TestServer(server.app)) as client:
            response = await client.get("/metrics")

        assert response.status == 404


class TestLifecycle:
    """TLS listener start and stop."""

    @pytest.mark.asyncio
    async def test_serves_over_tls_and_stops(self, build_server, metrics, certificate_manager):
        port = unused_port()
        server = build_server(port=port)
        server.host = "127.0.0.1"

        async with server:
            assert metrics.sample("webhook_up") == 1
            assert certificate_manager.monitoring is True
            async with aiohttp.ClientSession() as session:
                async with session.get(f"https://127.0.0.1:{port}/livez", ssl=False) as response:
                    assert response.status == 200

        assert metrics.sample("webhook_up") == 0
        assert certificate_manager.monitoring is False

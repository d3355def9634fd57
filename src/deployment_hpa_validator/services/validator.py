"""
Deployment/HPA compatibility validator.

A Deployment running exactly one replica must never be the scale target of a
HorizontalPodAutoscaler. The rule is checked from both sides: when a
Deployment is written, existing HPAs in its namespace are listed; when an HPA
is written, its target Deployment is read. Cluster state is read fresh on
every call.

The two checks are independent reads, not a transaction: a Deployment and an
HPA admitted concurrently can each see the other as absent and both pass.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from kubernetes import client

from deployment_hpa_validator.constants import (
    KIND_DEPLOYMENT,
    KIND_HPA,
    KUBERNETES_READ_TIMEOUT_SECONDS,
    SINGLE_REPLICA,
)
from deployment_hpa_validator.errors import (
    WebhookError,
    deployment_hpa_conflict_error,
    hpa_single_replica_error,
)
from deployment_hpa_validator.models import DeploymentProjection, HPAProjection
from deployment_hpa_validator.observability.metrics import WebhookMetrics
from deployment_hpa_validator.utils.kubernetes import classify_api_error, is_not_found

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of ``Validator.validate_resource``."""

    allowed: bool
    message: str = ""
    code: int = 200


class Validator:
    """Stateless rule engine backed by live Kubernetes API reads."""

    def __init__(
        self,
        k8s_client: client.ApiClient | None = None,
        metrics: WebhookMetrics | None = None,
        apps_api: client.AppsV1Api | None = None,
        autoscaling_api: client.AutoscalingV2Api | None = None,
        read_timeout: float = KUBERNETES_READ_TIMEOUT_SECONDS,
    ):
        """
        Initialize the validator.

        Args:
            k8s_client: Kubernetes API client, created lazily if not provided
            metrics: Metrics collector for Kubernetes API call counts
            apps_api: Pre-built apps/v1 API, mainly for tests
            autoscaling_api: Pre-built autoscaling/v2 API, mainly for tests
            read_timeout: Per-read client timeout in seconds
        """
        self.k8s_client = k8s_client
        self.metrics = metrics
        self._apps_api = apps_api
        self._autoscaling_api = autoscaling_api
        self.read_timeout = read_timeout

    @property
    def kubernetes_client(self) -> client.ApiClient:
        if self.k8s_client is None:
            from deployment_hpa_validator.utils.kubernetes import get_kubernetes_client

            self.k8s_client = get_kubernetes_client()
        return self.k8s_client

    @property
    def apps_api(self) -> client.AppsV1Api:
        if self._apps_api is None:
            self._apps_api = client.AppsV1Api(self.kubernetes_client)
        return self._apps_api

    @property
    def autoscaling_api(self) -> client.AutoscalingV2Api:
        if self._autoscaling_api is None:
            self._autoscaling_api = client.AutoscalingV2Api(self.kubernetes_client)
        return self._autoscaling_api

    async def validate_deployment(self, deployment: DeploymentProjection) -> None:
        """
        Reject a single-replica Deployment targeted by an existing HPA.

        Args:
            deployment: Deployment under admission

        Raises:
            WebhookError: Validation error on conflict, or a classified
                read failure when the HPA list cannot be fetched
        """
        if deployment.replicas != SINGLE_REPLICA:
            return

        hpas = await self._list_hpas(deployment.namespace)
        for hpa in hpas:
            if hpa.targets(deployment):
                logger.info(
                    f"Deployment {deployment.namespace}/{deployment.name} with 1 replica "
                    f"is targeted by HPA {hpa.name}",
                    extra={
                        "resource_type": KIND_DEPLOYMENT,
                        "resource_name": deployment.name,
                        "namespace": deployment.namespace,
                        "operation": "validate_deployment",
                    },
                )
                raise deployment_hpa_conflict_error()

    async def validate_hpa(self, hpa: HPAProjection) -> None:
        """
        Reject an HPA whose target Deployment runs a single replica.

        A missing target Deployment is allowed: it may be created later in
        the same apply.

        Args:
            hpa: HPA under admission

        Raises:
            WebhookError: Validation error on conflict, or a classified
                read failure when the Deployment cannot be read
        """
        if not hpa.targets_deployment:
            return

        deployment = await self._read_deployment(
            hpa.namespace, hpa.scale_target_ref.name
        )
        if deployment is None:
            logger.debug(
                f"Target Deployment {hpa.namespace}/{hpa.scale_target_ref.name} "
                f"of HPA {hpa.name} not found, allowing"
            )
            return

        if deployment.replicas == SINGLE_REPLICA:
            logger.info(
                f"HPA {hpa.namespace}/{hpa.name} targets Deployment "
                f"{deployment.name} with 1 replica",
                extra={
                    "resource_type": KIND_HPA,
                    "resource_name": hpa.name,
                    "namespace": hpa.namespace,
                    "operation": "validate_hpa",
                },
            )
            raise hpa_single_replica_error()

    async def validate_resource(self, resource_type: str, resource: Any) -> ValidationResult:
        """
        Validate a projection by kind and report the outcome as a value.

        Args:
            resource_type: Kind of the resource
            resource: DeploymentProjection or HPAProjection

        Returns:
            ValidationResult; unsupported kinds are allowed
        """
        if resource_type == KIND_DEPLOYMENT:
            if not isinstance(resource, DeploymentProjection):
                return ValidationResult(
                    False, f"expected a Deployment, got {type(resource).__name__}", 500
                )
            check = self.validate_deployment(resource)
        elif resource_type == KIND_HPA:
            if not isinstance(resource, HPAProjection):
                return ValidationResult(
                    False,
                    f"expected a HorizontalPodAutoscaler, got {type(resource).__name__}",
                    500,
                )
            check = self.validate_hpa(resource)
        else:
            return ValidationResult(True, f"resource type {resource_type} is not validated")

        try:
            await check
        except WebhookError as e:
            return ValidationResult(False, e.message, e.http_status)
        return ValidationResult(True)

    async def _read_deployment(self, namespace: str, name: str) -> DeploymentProjection | None:
        try:
            deployment = await asyncio.to_thread(
                self.apps_api.read_namespaced_deployment,
                name=name,
                namespace=namespace,
                _request_timeout=self.read_timeout,
            )
        except Exception as e:
            if is_not_found(e):
                self._record_call("get", "deployments", True)
                return None
            self._record_call("get", "deployments", False)
            raise classify_api_error(f"get deployment {namespace}/{name}", e) from e

        self._record_call("get", "deployments", True)
        return DeploymentProjection.from_api(deployment)

    async def _list_hpas(self, namespace: str) -> list[HPAProjection]:
        try:
            hpa_list = await asyncio.to_thread(
                self.autoscaling_api.list_namespaced_horizontal_pod_autoscaler,
                namespace=namespace,
                _request_timeout=self.read_timeout,
            )
        except Exception as e:
            self._record_call("list", "horizontalpodautoscalers", False)
            raise classify_api_error(f"list horizontalpodautoscalers in {namespace}", e) from e

        self._record_call("list", "horizontalpodautoscalers", True)
        return [HPAProjection.from_api(item) for item in hpa_list.items or []]

    def _record_call(self, method: str, resource: str, success: bool) -> None:
        if self.metrics is not None:
            self.metrics.record_kubernetes_request(method, resource, success)

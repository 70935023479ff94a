"""Utilities for issuing Kubernetes service account tokens."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Sequence

from kubernetes import client

from .. import metrics
from ..exceptions import AuthError, TransientRemoteError
from .rate_limit import rate_limit_k8s, retry_on_rate_limit

if TYPE_CHECKING:
    from ..auth import KubeAuthConfiguration


def request_service_account_token(
    api: client.CoreV1Api,
    namespace: str,
    service_account: str,
    audiences: Sequence[str] = (),
    expiration_seconds: int = 600,
) -> str:
    """Issue a short-lived JWT for a service account via the TokenRequest API.

    Args:
        api: Kubernetes API client
        namespace: Namespace of the service account
        service_account: Name of the service account
        audiences: Intended audiences of the token (API server default when empty)
        expiration_seconds: Requested token lifetime

    Returns:
        Signed service account JWT

    Raises:
        AuthError: If the service account does not exist or the request is forbidden
        TransientRemoteError: On other API server failures
    """
    body = client.AuthenticationV1TokenRequest(
        spec=client.V1TokenRequestSpec(
            audiences=list(audiences),
            expiration_seconds=expiration_seconds,
        )
    )

    start_time = time.time()
    try:
        response = retry_on_rate_limit(rate_limit_k8s(api.create_namespaced_service_account_token))(
            name=service_account,
            namespace=namespace,
            body=body,
        )
        metrics.api_call_total.labels(api_type="k8s", operation="token_request", result="success").inc()
    except client.exceptions.ApiException as e:
        metrics.api_call_total.labels(api_type="k8s", operation="token_request", result="error").inc()
        if e.status in (401, 403, 404):
            raise AuthError(
                f"Cannot issue token for service account '{service_account}' in namespace '{namespace}': {e.reason}"
            ) from e
        raise TransientRemoteError(f"TokenRequest failed: {e.reason}") from e
    finally:
        metrics.api_call_duration_seconds.labels(api_type="k8s", operation="token_request").observe(
            time.time() - start_time
        )

    return response.status.token


class ServiceAccountTokenSource:
    """Identity source handing the AuthManager a JWT for the configured service account."""

    def __init__(
        self,
        api: client.CoreV1Api,
        audiences: Sequence[str] = (),
        expiration_seconds: int = 600,
    ) -> None:
        self.api = api
        self.audiences = tuple(audiences)
        self.expiration_seconds = expiration_seconds

    def __call__(self, auth_config: KubeAuthConfiguration) -> str:
        return request_service_account_token(
            self.api,
            namespace=auth_config.resource_namespace,
            service_account=auth_config.service_account,
            audiences=self.audiences,
            expiration_seconds=self.expiration_seconds,
        )

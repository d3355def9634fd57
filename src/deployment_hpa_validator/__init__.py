"""
Deployment/HPA validator - A validating admission webhook for Kubernetes.

The webhook rejects configurations where a HorizontalPodAutoscaler targets a
Deployment that runs exactly one replica, in either creation order:
- HPA admission checks the replica count of its target Deployment
- Deployment admission checks for HPAs already targeting it
- TLS certificates are hot-reloaded without restarting the server
"""

__version__ = "0.1.0"

"""argocd-deploy - Argo CD deployment and rollback orchestrator for CI pipelines."""

__version__ = "0.4.0"

"""Argo CD controller port and adapters."""

from argocd_deploy.controller.base import ApplicationStatus, Controller, ControllerResult
from argocd_deploy.controller.api import ArgoCDApiController
from argocd_deploy.controller.cli import ArgoCDCliController, parse_history_table

__all__ = [
    "ApplicationStatus",
    "ArgoCDApiController",
    "ArgoCDCliController",
    "Controller",
    "ControllerResult",
    "parse_history_table",
]

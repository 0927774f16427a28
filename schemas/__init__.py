"""
Pydantic schemas for the control plane HTTP surface.

Schemas:
    api: Request bodies and response models for pipelines, the registry,
         cleanup and monitoring endpoints

Usage:
    from schemas.api import PipelineCreate, PipelineResponse, VersionCreate

Responses:
    Every endpoint answers {"success": true, ...}. Failures are rendered by
    the exception handlers as {"success": false, "error": "..."}.
"""

__all__ = [
    "PipelineCreate",
    "PipelineResponse",
    "PipelineConnectorResponse",
    "TransitionRequest",
    "VersionCreate",
    "ConnectorDefinitionResponse",
    "ConnectorVersionResponse",
    "DeploymentCreate",
    "DeploymentResponse",
    "CleanupRequest",
    "RestartRequest",
    "ThresholdsUpdate",
    "ErrorResponse",
]

"""
CDC pipeline control plane.

Subpackages and modules:
    connect: Kafka Connect REST client and topic administration
    registry: Versioned connector configuration, normalization and policies
    lifecycle: Pipeline state machine, soft delete, restore and retention sweep
    orchestrator: Deploy / start / pause / delete of a pipeline's connectors
    monitoring: Checks, alerts, metrics, notifications and the monitoring loop
    scheduler: APScheduler wiring of the background jobs

Usage:
    from controlplane.connect.client import ConnectClient
    from controlplane.orchestrator import DeploymentOrchestrator

    async with ConnectClient() as client:
        orchestrator = DeploymentOrchestrator(session, client)
        result = await orchestrator.deploy_pipeline(pipeline_id)
"""

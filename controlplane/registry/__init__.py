"""
Connector configuration registry.

Modules:
    service: ConfigRegistry (versions, activation, deployments)
    diff: Canonical form, checksum and flat diff of configs
    normalizer: Raw pipeline config to the flat map the engine accepts
    policies: Advisory warnings and blocking errors for a config
"""

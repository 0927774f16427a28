"""Execution engine access: Kafka Connect REST API and Kafka REST Proxy."""

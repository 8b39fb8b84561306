"""Persistence Gateway - flow documents, secret redaction, storage backends"""
from .gateway import PersistenceGateway, redact_secrets, FORMAT_VERSION
from .storage import FlowStorage, InMemoryFlowStorage, JsonFileFlowStorage

__all__ = [
    "PersistenceGateway",
    "redact_secrets",
    "FORMAT_VERSION",
    "FlowStorage",
    "InMemoryFlowStorage",
    "JsonFileFlowStorage",
]

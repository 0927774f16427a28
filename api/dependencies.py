"""
FastAPI dependency providers
"""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import AsyncGenerator
from core.database import async_session_maker
from controlplane.connect.client import ConnectClient
from controlplane.connect.topics import TopicAdmin


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Database session per request"""
    async with async_session_maker() as session:
        yield session


def get_connect_client(request: Request) -> ConnectClient:
    """Shared Kafka Connect client created at startup"""
    client = getattr(request.app.state, "connect_client", None)
    if client is None:
        client = ConnectClient()
        request.app.state.connect_client = client
    return client


def get_topic_admin() -> TopicAdmin:
    return TopicAdmin()

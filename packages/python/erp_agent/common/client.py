"""
MongoDB client shared by the durable event log, sequence reservation,
file resolution and semantic search.
"""
from __future__ import annotations

import logging
import os
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient

logger = logging.getLogger(__name__)

__all__ = ["AgentClient", "get_agent_client", "get_async_db"]


class AgentClient:
    def __init__(self, env: str = "dev", name: str | None = None):
        self.env = env
        self.name = name
        mongo_uri = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
        self.mongodb_async = AsyncIOMotorClient(mongo_uri)


def get_agent_client(env: str | None = None, name: str | None = None) -> AgentClient:
    """
    Get the agent client. The database name comes from ENV when env is not given.
    """
    if env is None:
        env = os.getenv("ENV", "dev")
    logger.info(f"Creating agent client for env={env} name={name}")
    return AgentClient(env=env, name=name)


def get_async_db(agent_client: Any):
    return agent_client.mongodb_async[agent_client.env]

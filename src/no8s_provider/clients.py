"""
SDK client factory.

Builds one boto3 client per service from AWSConfig. Controllers never
construct clients themselves; the caller injects them.
"""

import logging
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config as BotoConfig

from no8s_provider.config import AWSConfig

logger = logging.getLogger(__name__)


class ClientFactory:
    """Creates and caches boto3 clients keyed by service name."""

    def __init__(self, aws_config: Optional[AWSConfig] = None, session: Any = None):
        self.aws_config = aws_config or AWSConfig()
        self._session = session
        self._clients: Dict[str, Any] = {}

    @property
    def session(self) -> Any:
        if self._session is None:
            self._session = boto3.session.Session(
                profile_name=self.aws_config.profile,
                region_name=self.aws_config.region,
            )
        return self._session

    def client(self, service: str) -> Any:
        """Get a client for an SDK service, creating it on first use."""
        if service not in self._clients:
            # Retries are handled by the accessor with its own backoff
            self._clients[service] = self.session.client(
                service,
                endpoint_url=self.aws_config.endpoint_url,
                config=BotoConfig(retries={"max_attempts": 1, "mode": "standard"}),
            )
            endpoint = self.aws_config.endpoint_url
            logger.debug(
                f"Created {service} client in {self.aws_config.region}"
                + (f" at {endpoint}" if endpoint else "")
            )
        return self._clients[service]

    def __getitem__(self, service: str) -> Any:
        return self.client(service)

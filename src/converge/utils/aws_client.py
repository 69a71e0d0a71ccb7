"""Shared boto3 session and clients for the AWS provider."""

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config

from converge.utils.errors import ErrorContext, ReconcileError, error_handler
from converge.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AWSCredentials:
    """Who the session runs as, from STS GetCallerIdentity."""
    account_id: str
    user_arn: str
    user_id: str
    region: Optional[str]
    profile: Optional[str] = None


class AWSClientManager:
    """One boto3 session per profile/region, with one cached client per service.

    Every handler of the AWS provider asks the manager for its clients, so a
    run opens a single connection pool per service no matter how many kinds
    use it. botocore retries each call in standard mode (``max_attempts``);
    whole-resource retries are the caller's RetryPolicy.
    """

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        max_pool_connections: int = 50,
        max_attempts: int = 3,
        session: Optional[boto3.Session] = None
    ):
        """Initialize AWS client manager.

        Args:
            profile: AWS profile name to use
            region: AWS region to use
            max_pool_connections: Connections per client pool; should cover
                the executor's max_workers
            max_attempts: Transport-level attempts made by botocore per call
            session: Existing session to use instead of building one
        """
        self.profile = profile
        self.region = region
        self._session = session
        self._clients: Dict[str, Any] = {}
        self._credentials: Optional[AWSCredentials] = None
        self._lock = threading.Lock()

        self.boto_config = Config(
            max_pool_connections=max_pool_connections,
            retries={'mode': 'standard', 'max_attempts': max_attempts},
            connect_timeout=10,
            read_timeout=60,
        )

    @classmethod
    def from_session(cls, session: boto3.Session, **kwargs) -> "AWSClientManager":
        return cls(region=session.region_name, session=session, **kwargs)

    @property
    def session(self) -> boto3.Session:
        if self._session is None:
            kwargs = {}
            if self.profile:
                kwargs['profile_name'] = self.profile
            if self.region:
                kwargs['region_name'] = self.region

            self._session = boto3.Session(**kwargs)
            logger.info(f"Using AWS region {self._session.region_name} "
                        f"(profile: {self.profile or 'default'})")

        return self._session

    def get_client(self, service_name: str):
        """Return the cached client for ``service_name`` (e.g. 'ec2', 'elbv2').

        Clients are shared between worker threads; only creation is locked.
        """
        with self._lock:
            if service_name not in self._clients:
                self._clients[service_name] = self.session.client(
                    service_name, config=self.boto_config
                )
                logger.debug(f"Created {service_name} client")
            return self._clients[service_name]

    def validate_credentials(self) -> AWSCredentials:
        """Check that the session can call AWS at all.

        Returns:
            AWSCredentials describing the caller

        Raises:
            ReconcileError: Usually ProviderUnavailableError, when credentials
                are missing, invalid or AWS cannot be reached
        """
        if self._credentials is not None:
            return self._credentials

        try:
            identity = self.get_client('sts').get_caller_identity()
        except ReconcileError:
            raise
        except Exception as e:
            raise error_handler.handle_exception(
                e, ErrorContext(operation='validate_credentials', aws_service='sts')
            ) from e

        self._credentials = AWSCredentials(
            account_id=identity['Account'],
            user_arn=identity['Arn'],
            user_id=identity['UserId'],
            region=self.session.region_name,
            profile=self.profile,
        )
        logger.info(f"AWS credentials valid for account {self._credentials.account_id} "
                    f"({self._credentials.user_arn})")
        return self._credentials

    def get_region(self) -> Optional[str]:
        return self.session.region_name

    def clear_cache(self):
        """Drop cached clients and credentials."""
        with self._lock:
            self._clients.clear()
        self._credentials = None
        logger.debug("Cleared AWS client cache")

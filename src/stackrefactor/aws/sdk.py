"""Per-environment access to AWS, built on a single boto3 session."""

import logging
import threading

import boto3

from stackrefactor.aws.client import (
    DEFAULT_TOOLKIT_STACK_NAME,
    CloudFormationClient,
    CloudFormationResourceModels,
    EnvironmentToolkit,
    S3Uploader,
    translate_errors,
)
from stackrefactor.errors import NotFoundError
from stackrefactor.models import UNRESOLVED_ACCOUNTS, UNRESOLVED_REGIONS, Environment

logger = logging.getLogger(__name__)

FALLBACK_REGION = "us-east-1"


class SdkProvider:
    """Hands out AWS clients for an environment and resolves placeholder environments.

    Stacks synthesized without an explicit account or region carry placeholders
    (``unknown-account``, ``${AWS::Region}``...). Those are replaced with the
    account of the current credentials and the session's default region.
    Clients are only handed out for environments of that account.
    """

    def __init__(
        self,
        profile: str | None = None,
        region: str | None = None,
        toolkit_stack_name: str = DEFAULT_TOOLKIT_STACK_NAME,
        session: boto3.Session | None = None,
    ):
        self._session = session or boto3.Session(profile_name=profile, region_name=region)
        self.toolkit_stack_name = toolkit_stack_name
        self._account: str | None = None
        self._lock = threading.Lock()
        self._clients: dict[tuple[str, str], CloudFormationClient] = {}
        self._uploaders: dict[tuple[str, str], S3Uploader] = {}
        self._models: dict[tuple[str, str], CloudFormationResourceModels] = {}

    @property
    def default_region(self) -> str:
        return self._session.region_name or FALLBACK_REGION

    def default_account(self) -> str:
        """Account of the current credentials, looked up once through STS."""
        with self._lock:
            if self._account is None:
                with translate_errors("GetCallerIdentity"):
                    sts = self._session.client("sts", region_name=self.default_region)
                    identity = sts.get_caller_identity()
                self._account = identity["Account"]
                logger.debug("Resolved default account %s", self._account)
            return self._account

    def resolve_environment(self, environment: Environment) -> Environment:
        if not environment.is_unresolved:
            return environment
        account = environment.account
        if account in UNRESOLVED_ACCOUNTS:
            account = self.default_account()
        region = environment.region
        if region in UNRESOLVED_REGIONS:
            region = self.default_region
        return Environment(account=account, region=region, name=environment.name)

    def cloudformation(self, environment: Environment) -> CloudFormationClient:
        key = self._key(environment)
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = self._clients[key] = CloudFormationClient(
                    region=environment.region, session=self._session
                )
            return client

    def toolkit(self, environment: Environment) -> EnvironmentToolkit:
        cloudformation = self.cloudformation(environment)
        key = self._key(environment)
        with self._lock:
            uploader = self._uploaders.get(key)
            if uploader is None:
                uploader = self._uploaders[key] = S3Uploader(region=environment.region, session=self._session)
        return EnvironmentToolkit(cloudformation, uploader, self.toolkit_stack_name)

    def resource_models(self, environment: Environment) -> CloudFormationResourceModels:
        client = self.cloudformation(environment)
        key = self._key(environment)
        with self._lock:
            models = self._models.get(key)
            if models is None:
                models = self._models[key] = CloudFormationResourceModels(client)
            return models

    def _key(self, environment: Environment) -> tuple[str, str]:
        """Cache key of ``environment``, which must belong to the account of the current credentials."""
        account = self.default_account()
        if environment.account != account:
            raise NotFoundError(
                f"Environment {environment} is not reachable with the current credentials "
                f"(account {account}). Run with a profile for account {environment.account}."
            )
        return environment.account, environment.region

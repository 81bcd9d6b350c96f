import logging
from typing import Annotated, Callable

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from kiln.config.environment import BuildEnvironment
from kiln.const import (
    CredentialSourceEnum,
    DEFAULT_ONEPASSWORD_SECRET_REF,
    ENV_GITHUB_TOKEN,
    ENV_OP_SERVICE_ACCOUNT_TOKEN,
)
from kiln.error import KilnCredentialError
from kiln.registry.secret_store import OnePasswordSecretStore, SecretStore

log = logging.getLogger(__name__)


class Credential(BaseModel):
    """A registry credential and the source that provided it.

    The token is held as a ``SecretStr`` and is masked in every string representation. ``source`` is kept for
    diagnostics only.
    """

    model_config = ConfigDict(frozen=True)

    token: Annotated[SecretStr, Field(description="Registry token or password.")]
    username: Annotated[str | None, Field(default=None, description="Username paired with the token, if any.")]
    source: Annotated[CredentialSourceEnum, Field(description="Which source satisfied resolution.")]

    @property
    def is_bearer(self) -> bool:
        """A token without a username is sent as a bearer token."""
        return not self.username

    def __str__(self) -> str:
        s = f"{self.source.value}"
        if self.username:
            s += f" (user '{self.username}')"
        return s


def resolve_credential(
    environment: BuildEnvironment,
    explicit_token: str | None = None,
    username: str | None = None,
    secret_store_factory: Callable[[SecretStr], SecretStore] = OnePasswordSecretStore,
    secret_ref: str = DEFAULT_ONEPASSWORD_SECRET_REF,
) -> Credential:
    """Resolve registry credentials from the first available source.

    Sources are consulted in order: an explicitly supplied token, the ``GITHUB_TOKEN`` environment variable, then
    1Password when ``OP_SERVICE_ACCOUNT_TOKEN`` is set.

    :param environment: The captured build environment.
    :param explicit_token: Token supplied on the command line.
    :param username: Optional username paired with whichever token is resolved.
    :param secret_store_factory: Factory creating the secret store from the service account token.
    :param secret_ref: The secret reference holding the registry token.

    :raises KilnCredentialError: If no source provides a token.
    :raises KilnSecretStoreError: If the secret store is configured but fails.
    """
    username = username or None
    if explicit_token:
        return Credential(token=SecretStr(explicit_token), username=username, source=CredentialSourceEnum.CLI)

    if environment.github_token is not None:
        return Credential(token=environment.github_token, username=username, source=CredentialSourceEnum.ENV)

    if environment.op_service_account_token is not None:
        store = secret_store_factory(environment.op_service_account_token)
        log.debug(f"Reading registry token from {store.name}")
        token = store.resolve(secret_ref)
        return Credential(token=token, username=username, source=CredentialSourceEnum.ONEPASSWORD)

    raise KilnCredentialError(
        f"No registry authentication available: set the --token flag, the {ENV_GITHUB_TOKEN} environment variable, "
        f"or {ENV_OP_SERVICE_ACCOUNT_TOKEN} for 1Password integration"
    )

import os
from pathlib import Path
from typing import Annotated, Mapping

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from kiln.const import (
    ENV_ACTIONS_ID_TOKEN_REQUEST_TOKEN,
    ENV_ACTIONS_ID_TOKEN_REQUEST_URL,
    ENV_CI,
    ENV_COSIGN_PASSWORD,
    ENV_COSIGN_PRIVATE_KEY,
    ENV_GITHUB_ACTIONS,
    ENV_GITHUB_TOKEN,
    ENV_OP_SERVICE_ACCOUNT_TOKEN,
)


def _secret(environ: Mapping[str, str], name: str) -> SecretStr | None:
    value = environ.get(name)
    return SecretStr(value) if value else None


class BuildEnvironment(BaseModel):
    """Snapshot of every environment input the build consults.

    Constructed once at process start and passed explicitly to credential resolution and signing so that neither
    reads ``os.environ`` directly.
    """

    model_config = ConfigDict(frozen=True)

    github_token: Annotated[SecretStr | None, Field(default=None, description="Registry token from GITHUB_TOKEN.")]
    op_service_account_token: Annotated[
        SecretStr | None, Field(default=None, description="1Password service account token.")
    ]
    cosign_private_key: Annotated[
        SecretStr | None, Field(default=None, description="Cosign private key material from COSIGN_PRIVATE_KEY.")
    ]
    cosign_password: Annotated[SecretStr | None, Field(default=None, description="Cosign key passphrase.")]
    github_actions: Annotated[bool, Field(default=False, description="Running inside GitHub Actions.")]
    ci: Annotated[bool, Field(default=False, description="Running inside any CI system.")]
    actions_id_token_request_url: Annotated[str | None, Field(default=None)]
    actions_id_token_request_token: Annotated[SecretStr | None, Field(default=None)]
    home: Annotated[Path, Field(default_factory=Path.home, description="Home directory of the invoking user.")]

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> "BuildEnvironment":
        """Capture the build environment from a mapping, defaulting to the process environment."""
        if environ is None:
            environ = os.environ
        github_actions = environ.get(ENV_GITHUB_ACTIONS) == "true"
        args = dict(
            github_token=_secret(environ, ENV_GITHUB_TOKEN),
            op_service_account_token=_secret(environ, ENV_OP_SERVICE_ACCOUNT_TOKEN),
            cosign_private_key=_secret(environ, ENV_COSIGN_PRIVATE_KEY),
            cosign_password=_secret(environ, ENV_COSIGN_PASSWORD),
            github_actions=github_actions,
            ci=environ.get(ENV_CI) == "true" or github_actions,
            actions_id_token_request_url=environ.get(ENV_ACTIONS_ID_TOKEN_REQUEST_URL) or None,
            actions_id_token_request_token=_secret(environ, ENV_ACTIONS_ID_TOKEN_REQUEST_TOKEN),
        )
        if environ.get("HOME"):
            args["home"] = Path(environ["HOME"])
        return cls(**args)

    @property
    def ci_identity(self) -> bool:
        """Whether an automated CI identity context is available for keyless signing."""
        return self.github_actions

    @property
    def can_request_identity_token(self) -> bool:
        return bool(self.actions_id_token_request_url and self.actions_id_token_request_token)

import logging
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from kiln.const import ENV_COSIGN_PRIVATE_KEY, SigningMethodEnum

log = logging.getLogger(__name__)


class KeylessSigning(BaseModel):
    """Sign with a short-lived certificate bound to an OIDC identity."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["keyless"] = "keyless"
    ci_identity: Annotated[
        bool, Field(default=False, description="Whether an automated CI identity is available for the OIDC exchange.")
    ]

    @property
    def method(self) -> SigningMethodEnum:
        return SigningMethodEnum.KEYLESS

    def __str__(self) -> str:
        return "keyless (CI identity)" if self.ci_identity else "keyless"


class KeyBasedSigning(BaseModel):
    """Sign with a cosign private key held in a file or in an environment variable."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["key-based"] = "key-based"
    key_path: Annotated[Path | None, Field(default=None, description="Path to a cosign private key file.")]
    key_env: Annotated[
        str | None, Field(default=None, description="Environment variable holding the cosign private key.")
    ]

    @property
    def method(self) -> SigningMethodEnum:
        return SigningMethodEnum.KEY_BASED

    @property
    def key_ref(self) -> str:
        """The key reference in the form cosign's ``--key`` flag accepts."""
        if self.key_env is not None:
            return f"env://{self.key_env}"
        return str(self.key_path)

    @property
    def is_file_key(self) -> bool:
        return self.key_env is None

    def __str__(self) -> str:
        return f"key-based ({self.key_ref})"


class NoSigning(BaseModel):
    """Signing was not requested."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["none"] = "none"

    @property
    def method(self) -> SigningMethodEnum:
        return SigningMethodEnum.NONE

    def __str__(self) -> str:
        return "none"


SigningDecision = Annotated[Union[KeylessSigning, KeyBasedSigning, NoSigning], Field(discriminator="kind")]


def decide_signing(
    sign: bool,
    ci_identity: bool,
    key_path: Path | None,
    key_env_value: str | None,
    default_key_path: Path,
) -> SigningDecision:
    """Choose how an image will be signed.

    When signing is requested, an automated CI identity always selects keyless signing. Otherwise the first available
    key is used: the explicit key path, then the ``COSIGN_PRIVATE_KEY`` value, then the default key file. With no key
    available at all, signing falls back to keyless, which is interactive outside CI.

    :param sign: Whether signing was requested.
    :param ci_identity: Whether an automated CI identity context is available.
    :param key_path: An explicitly configured key path. A path that does not exist is reported and skipped.
    :param key_env_value: The value of ``COSIGN_PRIVATE_KEY``, if set.
    :param default_key_path: The conventional key location to check last.
    """
    if not sign:
        return NoSigning()
    if ci_identity:
        return KeylessSigning(ci_identity=True)

    if key_path is not None:
        key_path = Path(key_path).expanduser()
        if key_path.is_file():
            return KeyBasedSigning(key_path=key_path)
        log.warning(f"Cosign key '{key_path}' does not exist, ignoring it")

    if key_env_value:
        return KeyBasedSigning(key_env=ENV_COSIGN_PRIVATE_KEY)

    default_key_path = Path(default_key_path).expanduser()
    if default_key_path.is_file():
        return KeyBasedSigning(key_path=default_key_path)

    log.info("No cosign key available, falling back to keyless signing")
    return KeylessSigning(ci_identity=False)

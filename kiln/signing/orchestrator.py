import logging
from pathlib import Path
from typing import Callable

import requests
import typer
from pydantic import SecretStr

from kiln.config.environment import BuildEnvironment
from kiln.const import DEFAULT_COSIGN_KEY_PATH
from kiln.error import KilnSigningError, KilnToolError
from kiln.image.reference import ImageReference
from kiln.signing.cosign import CosignSigner, SignatureArtifact, simple_signing_payload
from kiln.signing.decision import (
    KeyBasedSigning,
    KeylessSigning,
    NoSigning,
    SigningDecision,
    decide_signing,
)
from kiln.signing.identity import request_github_actions_id_token

log = logging.getLogger(__name__)


def prompt_passphrase(key_ref: str) -> SecretStr:
    return SecretStr(typer.prompt(f"Enter passphrase for cosign key {key_ref}", hide_input=True, default=""))


class SigningOrchestrator:
    """Decides how to sign built images and produces their signatures.

    :param environment: The captured build environment.
    :param key_path: An explicit cosign key path, from ``--cosign-key`` or ``KILN_COSIGN_KEY_PATH``.
    :param signer: The cosign signer to use.
    :param passphrase_prompt: Called to ask for a key passphrase when one is needed and not in the environment.
    :param session: Optional HTTP session used to request CI identity tokens.
    """

    def __init__(
        self,
        environment: BuildEnvironment,
        key_path: Path | None = None,
        signer: CosignSigner | None = None,
        passphrase_prompt: Callable[[str], SecretStr] = prompt_passphrase,
        session: requests.Session | None = None,
    ):
        self.environment = environment
        self.key_path = key_path
        self.signer = signer or CosignSigner()
        self.passphrase_prompt = passphrase_prompt
        self.session = session

    def decide(self, sign: bool) -> SigningDecision:
        default_key_path = self.environment.home / Path(DEFAULT_COSIGN_KEY_PATH).relative_to("~")
        return decide_signing(
            sign=sign,
            ci_identity=self.environment.ci_identity,
            key_path=self.key_path,
            key_env_value=(
                self.environment.cosign_private_key.get_secret_value()
                if self.environment.cosign_private_key is not None
                else None
            ),
            default_key_path=default_key_path,
        )

    def sign(self, decision: SigningDecision, reference: ImageReference, digest: str) -> SignatureArtifact | None:
        """Sign a manifest digest for the given destination reference.

        :return: The signature artifact, or None for ``NoSigning``.

        :raises KilnSigningError: If the signature could not be produced.
        """
        if isinstance(decision, NoSigning):
            return None

        log.info(f"Signing {reference.context}@{digest} using {decision} signing")
        payload = simple_signing_payload(reference, digest)
        try:
            if isinstance(decision, KeyBasedSigning):
                signature, certificate = self.signer.sign_blob(
                    payload, key=decision.key_ref, passphrase=self._passphrase(decision)
                )
            elif isinstance(decision, KeylessSigning):
                signature, certificate = self.signer.sign_blob(payload, identity_token=self._identity_token())
            else:
                raise KilnSigningError(f"Unsupported signing decision '{decision}'", str(reference))
        except KilnToolError as e:
            raise KilnSigningError(f"Failed to sign {reference}: {str(e).rstrip()}", str(reference)) from e

        if not signature:
            raise KilnSigningError(f"cosign produced an empty signature for {reference}", str(reference))
        return SignatureArtifact(
            reference=reference,
            digest=digest,
            method=decision.method,
            payload=payload,
            signature=signature,
            certificate=certificate,
        )

    def _passphrase(self, decision: KeyBasedSigning) -> SecretStr | None:
        if self.environment.cosign_password is not None:
            return self.environment.cosign_password
        if decision.is_file_key:
            return self.passphrase_prompt(decision.key_ref)
        return None

    def _identity_token(self) -> SecretStr | None:
        if self.environment.can_request_identity_token:
            return request_github_actions_id_token(self.environment, session=self.session)
        if self.environment.ci_identity:
            log.warning("GitHub Actions identity token is not available, cosign will attempt its own OIDC flow")
        return None

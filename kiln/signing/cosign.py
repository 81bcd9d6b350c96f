"""Integration with the cosign CLI and the cosign signature layout in OCI registries."""

import json
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from kiln.const import (
    COSIGN_CERTIFICATE_ANNOTATION,
    COSIGN_SIGNATURE_ANNOTATION,
    COSIGN_SIGNATURE_TYPE,
    ENV_COSIGN_PASSWORD,
    MEDIA_TYPE_COSIGN_SIMPLE_SIGNING,
    MEDIA_TYPE_OCI_CONFIG,
    MEDIA_TYPE_OCI_MANIFEST,
    SigningMethodEnum,
)
from kiln.error import KilnToolNotFoundError, KilnToolRuntimeError
from kiln.image.descriptor import Descriptor, ImageManifest
from kiln.image.reference import ImageReference
from kiln.settings import SETTINGS
from kiln.util import find_bin, auto_path, sha256_digest

log = logging.getLogger(__name__)


def _redact(cmd: list[str], secret: SecretStr | None) -> list[str]:
    if secret is None:
        return cmd
    return ["***" if arg == secret.get_secret_value() else arg for arg in cmd]


def simple_signing_payload(reference: ImageReference, digest: str) -> bytes:
    """Build the cosign "simple signing" payload binding a repository to a manifest digest."""
    payload = {
        "critical": {
            "identity": {"docker-reference": reference.context},
            "image": {"docker-manifest-digest": digest},
            "type": COSIGN_SIGNATURE_TYPE,
        },
        "optional": None,
    }
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


class SignatureArtifact(BaseModel):
    """A detached signature over an image manifest digest, in the layout cosign stores in registries."""

    model_config = ConfigDict(frozen=True)

    reference: Annotated[ImageReference, Field(description="The image reference that was signed.")]
    digest: Annotated[str, Field(description="The signed manifest digest.")]
    method: SigningMethodEnum
    payload: Annotated[bytes, Field(description="The simple signing payload.")]
    signature: Annotated[str, Field(description="Base64 encoded signature over the payload.")]
    certificate: Annotated[str | None, Field(default=None, description="Signing certificate for keyless signing.")]

    @property
    def tag(self) -> str:
        """The tag cosign uses for the signature of a digest, e.g. ``sha256-<hex>.sig``."""
        return f"{self.digest.replace(':', '-')}.sig"

    @property
    def payload_descriptor(self) -> Descriptor:
        annotations = {COSIGN_SIGNATURE_ANNOTATION: self.signature}
        if self.certificate:
            annotations[COSIGN_CERTIFICATE_ANNOTATION] = self.certificate
        return Descriptor(
            media_type=MEDIA_TYPE_COSIGN_SIMPLE_SIGNING,
            digest=sha256_digest(self.payload),
            size=len(self.payload),
            annotations=annotations,
        )

    @property
    def config_bytes(self) -> bytes:
        config = {
            "architecture": "",
            "os": "",
            "config": {},
            "rootfs": {"type": "layers", "diff_ids": [sha256_digest(self.payload)]},
        }
        return json.dumps(config, separators=(",", ":")).encode("utf-8")

    @property
    def manifest(self) -> ImageManifest:
        config_bytes = self.config_bytes
        return ImageManifest(
            media_type=MEDIA_TYPE_OCI_MANIFEST,
            config=Descriptor(
                media_type=MEDIA_TYPE_OCI_CONFIG, digest=sha256_digest(config_bytes), size=len(config_bytes)
            ),
            layers=[self.payload_descriptor],
        )


class CosignSigner:
    """Runs ``cosign sign-blob`` to produce detached signatures.

    :param cosign_bin: Optional path to the cosign binary. Discovered from ``COSIGN_PATH`` or the PATH if omitted.
    """

    def __init__(self, cosign_bin: str | None = None):
        self._cosign_bin = cosign_bin

    @property
    def cosign_bin(self) -> str:
        if self._cosign_bin is None:
            self._cosign_bin = find_bin(auto_path(), "cosign", "COSIGN_PATH")
        return self._cosign_bin

    def sign_blob(
        self,
        payload: bytes,
        key: str | None = None,
        passphrase: SecretStr | None = None,
        identity_token: SecretStr | None = None,
    ) -> tuple[str, str | None]:
        """Sign a payload.

        With ``key`` the signature is made with that key reference (a file path or ``env://VAR``). Without a key,
        keyless signing is used: cosign exchanges ``identity_token`` (or an interactive OIDC login) for a short-lived
        certificate.

        :return: The base64 signature and, for keyless signing, the PEM certificate.

        :raises KilnToolNotFoundError: If the cosign binary cannot be executed.
        :raises KilnToolRuntimeError: If cosign cannot be started or exits with an error.
        """
        run_env = os.environ.copy()
        if passphrase is not None:
            run_env[ENV_COSIGN_PASSWORD] = passphrase.get_secret_value()
        interactive = key is None and identity_token is None

        with tempfile.TemporaryDirectory(prefix="kiln-sign", dir=SETTINGS.temporary_storage) as tmp:
            tmp_path = Path(tmp)
            payload_file = tmp_path / "payload.json"
            signature_file = tmp_path / "payload.sig"
            certificate_file = tmp_path / "payload.pem"
            payload_file.write_bytes(payload)

            cmd = [self.cosign_bin, "sign-blob", "--yes", "--output-signature", str(signature_file)]
            if key is not None:
                cmd.extend(["--key", key])
            else:
                cmd.extend(["--output-certificate", str(certificate_file)])
                if identity_token is not None:
                    cmd.extend(["--identity-token", identity_token.get_secret_value()])
            cmd.append(str(payload_file))

            log.debug(f"Running {self.cosign_bin} sign-blob")
            stderr = None if interactive else subprocess.PIPE
            try:
                p = subprocess.run(cmd, env=run_env, stdout=subprocess.PIPE, stderr=stderr)
            except FileNotFoundError as e:
                raise KilnToolNotFoundError(f"Could not run cosign at '{self.cosign_bin}': {e}", "cosign") from e
            except OSError as e:
                raise KilnToolRuntimeError(
                    f"Failed to start cosign: {e}",
                    tool_name="cosign",
                    cmd=_redact(cmd, identity_token),
                    exit_code=-1,
                ) from e
            if p.returncode != 0:
                raise KilnToolRuntimeError(
                    "cosign failed to sign the image payload",
                    tool_name="cosign",
                    cmd=_redact(cmd, identity_token),
                    stdout=p.stdout,
                    stderr=p.stderr,
                    exit_code=p.returncode,
                )

            signature = signature_file.read_text().strip()
            certificate = certificate_file.read_text() if certificate_file.is_file() else None
        return signature, certificate

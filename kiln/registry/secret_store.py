import logging
import os
import subprocess
from typing import Protocol

from pydantic import SecretStr

from kiln.const import ENV_OP_SERVICE_ACCOUNT_TOKEN
from kiln.error import KilnSecretStoreError, KilnToolNotFoundError
from kiln.util import find_bin, auto_path

log = logging.getLogger(__name__)


class SecretStore(Protocol):
    """A service that can resolve a secret reference to its value."""

    name: str

    def resolve(self, secret_ref: str) -> SecretStr: ...


class OnePasswordSecretStore:
    """Resolves ``op://`` secret references with the 1Password CLI using a service account.

    :param service_account_token: The 1Password service account token to authenticate with.
    :param op_bin: Optional path to the ``op`` binary. Discovered from ``OP_PATH`` or the PATH if omitted.
    """

    name = "1password"

    def __init__(self, service_account_token: SecretStr, op_bin: str | None = None):
        self.service_account_token = service_account_token
        self._op_bin = op_bin

    @property
    def op_bin(self) -> str:
        if self._op_bin is None:
            try:
                self._op_bin = find_bin(auto_path(), "op", "OP_PATH")
            except KilnToolNotFoundError as e:
                raise KilnSecretStoreError(
                    "The 1Password CLI 'op' is required to read registry credentials from 1Password."
                ) from e
        return self._op_bin

    def resolve(self, secret_ref: str) -> SecretStr:
        """Read a single secret reference.

        :raises KilnSecretStoreError: If the CLI is missing, authentication fails, or the secret does not exist.
        """
        cmd = [self.op_bin, "read", "--no-newline", secret_ref]
        run_env = os.environ.copy()
        run_env[ENV_OP_SERVICE_ACCOUNT_TOKEN] = self.service_account_token.get_secret_value()
        log.debug(f"Resolving 1Password secret '{secret_ref}'")
        try:
            p = subprocess.run(cmd, env=run_env, capture_output=True)
        except OSError as e:
            raise KilnSecretStoreError(f"Failed to run 1Password CLI: {e}", secret_ref) from e
        if p.returncode != 0:
            stderr = p.stderr.decode("utf-8", errors="replace").strip()
            raise KilnSecretStoreError(f"Failed to resolve 1Password secret '{secret_ref}': {stderr}", secret_ref)

        value = p.stdout.decode("utf-8").strip()
        if not value:
            raise KilnSecretStoreError(f"1Password secret '{secret_ref}' is empty", secret_ref)
        return SecretStr(value)

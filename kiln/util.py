import hashlib
import logging
import os
from pathlib import Path
from shutil import which
from typing import Union

from kiln.error import KilnToolNotFoundError

log = logging.getLogger(__name__)


def find_bin(context: Union[str, bytes, os.PathLike], bin_name: str, bin_env_var: str) -> str:
    """Search for a binary as an env var, in the PATH, or in the project tools directory

    :param context: The project context to search for the binary in
    :param bin_name: The name of the binary to search for
    :param bin_env_var: The environment variable to search for
    """
    context = Path(context)

    if os.environ.get(bin_env_var) is not None:
        return os.environ.get(bin_env_var)
    elif which(bin_name) is not None:
        return bin_name
    elif (context / "tools" / bin_name).is_file():
        return str(context / "tools" / bin_name)
    else:
        log.error(
            f"Could not find {bin_name} in PATH or in project tools directory. "
            f"Either install {bin_name} or set the `{bin_env_var}` environment variable."
        )
        raise KilnToolNotFoundError(f"Could not find tool '{bin_name}'.", bin_name)


def sha256_digest(data: bytes) -> str:
    """Return the content-addressable digest string for a byte sequence."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def auto_path() -> Path:
    context = Path(os.getcwd())
    return context

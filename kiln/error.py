import os
from pathlib import Path
from typing import Union, List


class KilnError(Exception):
    """Base class for all kiln exceptions"""

    pass


class KilnFileError(KilnError):
    """Generic error for file/directory issues"""

    def __init__(
        self,
        message: str = None,
        filepath: Union[str, bytes, os.PathLike] | List[Union[str, bytes, os.PathLike]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.filepath = filepath

        if filepath:
            filepath_note = f"Expected filepath(s): "
            if isinstance(filepath, (str, bytes, os.PathLike)):
                filepath_note += f"  - {filepath}\n"
            elif isinstance(filepath, list):
                for f in filepath:
                    filepath_note += f"  - {f}\n"
            self.add_note(filepath_note)


class KilnContextError(KilnFileError):
    """Error for a missing, empty, or unreadable build context"""

    pass


class KilnManifestError(KilnFileError):
    """Error for a missing or invalid build manifest"""

    pass


class KilnReferenceError(KilnError):
    """Error for an image reference that cannot be parsed"""

    def __init__(self, message: str = None, reference: str = None) -> None:
        super().__init__(message)
        self.message = message
        self.reference = reference


class KilnCredentialError(KilnError):
    """Error for registry credentials that could not be resolved"""

    pass


class KilnSecretStoreError(KilnCredentialError):
    """Error for failures while reading a credential from a secret store"""

    def __init__(self, message: str = None, secret_ref: str = None) -> None:
        super().__init__(message)
        self.message = message
        self.secret_ref = secret_ref


class KilnRegistryError(KilnError):
    """Generic error for registry transport and protocol issues"""

    def __init__(self, message: str = None, url: str = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url
        self.status_code = status_code

    def __str__(self) -> str:
        s = f"{self.message}"
        if self.status_code is not None:
            s += f" (HTTP {self.status_code})"
        return s


class KilnLocalRegistryError(KilnRegistryError):
    """Error for an unreachable local registry"""

    def __init__(self, message: str = None, url: str = None, tip: str = None) -> None:
        super().__init__(message, url=url)
        self.tip = tip

    def __str__(self) -> str:
        s = f"{self.message}"
        if self.tip:
            s += f"\n{self.tip}"
        return s


class KilnSigningError(KilnError):
    """Error for image signing failures"""

    def __init__(self, message: str = None, reference: str = None) -> None:
        super().__init__(message)
        self.message = message
        self.reference = reference


class KilnToolError(KilnError):
    """Generic error for external tool issues"""

    def __init__(self, message: str = None, tool_name: str = None) -> None:
        super().__init__(message)
        self.message = message
        self.tool_name = tool_name


class KilnToolNotFoundError(KilnToolError):
    """Error for an expected tool not being found"""

    pass


class KilnToolRuntimeError(KilnToolError):
    def __init__(
        self,
        message: str = None,
        tool_name: str = None,
        cmd: List[str] = None,
        stdout: str | bytes | None = None,
        stderr: str | bytes | None = None,
        exit_code: int = 1,
    ) -> None:
        super().__init__(message, tool_name)
        self.exit_code = exit_code
        self.cmd = cmd or []
        self.stdout = stdout
        self.stderr = stderr

    def dump_stderr(self, lines: int = 10) -> str:
        if not self.stderr:
            return ""
        if isinstance(self.stderr, bytes):
            return "\n".join(self.stderr.decode().splitlines()[:lines])
        else:
            return "\n".join(self.stderr.splitlines()[:lines])

    def __str__(self) -> str:
        s = f"{self.message}\n"
        s += f"  - Exit code: {self.exit_code}\n"
        s += f"  - Command executed: {' '.join(self.cmd)}\n"
        stderr = self.dump_stderr()
        if stderr:
            s += f"  - Error output:\n"
            for line in stderr.splitlines():
                s += f"      {line}\n"
        return s

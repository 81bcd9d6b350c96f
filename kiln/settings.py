import tempfile
from pathlib import Path


class Settings:
    """Application settings and paths."""

    def __init__(self):
        self.temporary_storage: Path = Path(tempfile.gettempdir())
        self.http_connect_timeout: float = 30.0
        self.http_read_timeout: float = 300.0
        self.blob_chunk_size: int = 8 * 1024 * 1024

    @property
    def http_timeout(self) -> tuple[float, float]:
        """Connect and read timeouts for registry requests."""
        return self.http_connect_timeout, self.http_read_timeout


SETTINGS = Settings()

from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from kiln.cli.common import with_temporary_storage
from kiln.settings import SETTINGS

pytestmark = [
    pytest.mark.cli,
]


class TestWithTemporaryStorage:
    def test_restores_previous_storage(self, temporary_storage):
        """Temporary storage points at a fresh directory during the command and is restored afterwards."""
        seen: list[Path] = []

        @with_temporary_storage
        def command() -> None:
            seen.append(SETTINGS.temporary_storage)
            assert SETTINGS.temporary_storage.is_dir()

        app = typer.Typer()
        app.command()(command)

        result = CliRunner().invoke(app, [])

        assert result.exit_code == 0, result.output
        assert len(seen) == 1
        assert seen[0] != temporary_storage
        assert not seen[0].exists()
        assert SETTINGS.temporary_storage == temporary_storage

    def test_storage_usable_after_command(self, temporary_storage):
        """Code running after a command can still create files in temporary storage."""

        @with_temporary_storage
        def command() -> None:
            pass

        app = typer.Typer()
        app.command()(command)
        CliRunner().invoke(app, [])

        (SETTINGS.temporary_storage / "after").write_text("ok")
        assert (temporary_storage / "after").is_file()

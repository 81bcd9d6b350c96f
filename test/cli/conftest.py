import logging
from pathlib import Path

import pytest
from pytest_bdd import given, when, then, parsers

from kiln.const import LOCAL_REGISTRY
from kiln.registry.client import RegistryClient
from kiln.registry.publisher import validate_local_registry
from kiln.workload import WorkloadDriver
from test.cli.kiln_command import KilnCommand
from test.helpers import UnreachableRegistry, write_workload


@pytest.fixture
def kiln_command(home_path):
    command = KilnCommand()
    command.set_env("HOME", str(home_path))
    return command


@pytest.fixture(autouse=True)
def registry_transport(mocker, registry_session):
    """Route every registry request made by the CLI through the test session"""

    def _driver(options, environment):
        return WorkloadDriver(options, environment, session=registry_session)

    def _validate_local_registry():
        return validate_local_registry(RegistryClient(LOCAL_REGISTRY, session=registry_session))

    mocker.patch("kiln.cli.build.WorkloadDriver", side_effect=_driver)
    mocker.patch("kiln.cli.build.validate_local_registry", side_effect=_validate_local_registry)
    return registry_session


# Construct the kiln command and all arguments
@given("I call kiln")
def bare_command(kiln_command, home_path):
    kiln_command.reset()
    kiln_command.set_env("HOME", str(home_path))


@given(parsers.parse('I call kiln "{command}"'))
def top_level_command(kiln_command, home_path, command):
    kiln_command.reset()
    kiln_command.set_env("HOME", str(home_path))
    kiln_command.set_subcommand(command)


@given(parsers.parse('I call kiln "{subgroup}" "{subcommand}"'))
def subgroup_command(kiln_command, home_path, subgroup, subcommand):
    kiln_command.reset()
    kiln_command.set_env("HOME", str(home_path))
    kiln_command.set_subcommand([subgroup, subcommand])


@given("in the project context")
def project_context(kiln_command, project_path, base_registry):
    kiln_command.context = Path(project_path)


@given(parsers.parse('with a workload "{name}" based on "{base_image}"'))
def extra_workload(project_path, name, base_image):
    write_workload(project_path / "containers", name, from_line=f"FROM {base_image}")


@given(parsers.parse('with the workload "{name}" build manifest not valid UTF-8'))
def non_utf8_manifest(project_path, name):
    (project_path / "containers" / name / "Containerfile").write_bytes(
        b"# caf\xe9\nFROM registry.example.com/base/alpine:3.20\n"
    )


@given(parsers.parse("with the '{target_path}' path removed"))
def remove_path(project_path, target_path):
    target_path = project_path / target_path
    assert target_path.is_file()
    target_path.unlink()


@given("with the local registry running")
def local_registry_running(local_registry):
    pass


@given("with the local registry stopped")
def local_registry_stopped(registry_session):
    UnreachableRegistry(LOCAL_REGISTRY).mount(registry_session)


@given(parsers.parse('with the environment variable {name} set to "{value}"'))
def set_env(kiln_command, name, value):
    kiln_command.set_env(name, value)


@given("with the arguments:")
def add_args_table(kiln_command, datatable):
    for row in datatable:
        kiln_command.add_args(row)


# Run the command
@when("I execute the command")
def run(kiln_command, caplog):
    caplog.set_level(logging.INFO)
    kiln_command.run()


# Check the results of the command
@then("The command succeeds")
def check_success(kiln_command):
    assert kiln_command.result.exit_code == 0, kiln_command.result.output


@then(parsers.parse("The command exits with code {exit_code:d}"))
def check_exit_code(kiln_command, exit_code: int):
    assert kiln_command.result.exit_code == exit_code


@then("The command fails")
def check_failure(kiln_command):
    assert kiln_command.result.exit_code != 0


@then("usage is shown")
def check_usage(kiln_command):
    assert "Usage:" in kiln_command.result.stderr


@then("help is shown")
def check_help(kiln_command):
    assert "Usage:" in kiln_command.result.stdout
    assert "Options" in kiln_command.result.stdout


@then("the stdout output includes:")
def check_stdout(kiln_command, datatable):
    for row in datatable:
        assert row[0] in kiln_command.result.stdout


@then("the stderr output includes:")
def check_stderr(kiln_command, datatable):
    for row in datatable:
        assert row[0] in kiln_command.result.stderr


@then("the stderr output excludes:")
def check_stderr_excludes(kiln_command, datatable):
    for row in datatable:
        assert row[0] not in kiln_command.result.stderr


@then("the log includes:")
def check_log(caplog, datatable):
    for row in datatable:
        assert row[0] in caplog.text


@then(parsers.parse('the image "{repository}:{tag}" is published'))
def check_published(base_registry, repository, tag):
    assert (repository, tag) in base_registry.manifests


@then(parsers.parse('the image "{repository}:{tag}" is published to the local registry'))
def check_published_locally(local_registry, repository, tag):
    assert (repository, tag) in local_registry.manifests


@then("nothing is published")
def check_nothing_published(base_registry):
    assert base_registry.writes == []

"""Unit tests for the kubectl, Infisical and MySQL clients (subprocess and engine mocked)."""

from __future__ import annotations

import base64
import subprocess
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from sitedeploy.clients.command import run_command
from sitedeploy.clients.infisical import InfisicalSecretStore
from sitedeploy.clients.kubectl import KubectlClient
from sitedeploy.clients.mysql import MySQLDatabaseClient, _quote_identifier, _translate
from sitedeploy.exceptions import ClientError, CommandError, TransientClientError
from sitedeploy.models import Manifest
from sitedeploy.retry import RetryPolicy

_NO_WAIT = RetryPolicy(max_attempts=2, initial_delay_seconds=0.0, max_delay_seconds=0.0)


class _FakeRun:
    """Stand-in for subprocess.run returning queued results."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.calls: list[dict] = []

    def __call__(self, args, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append({"args": args, **kwargs})
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


def _ok(stdout: str = "") -> SimpleNamespace:
    return SimpleNamespace(returncode=0, stdout=stdout, stderr="")


def _fail(stderr: str, returncode: int = 1) -> SimpleNamespace:
    return SimpleNamespace(returncode=returncode, stdout="", stderr=stderr)


def test_run_command_returns_stdout(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRun(_ok("hello\n"))
    monkeypatch.setattr("sitedeploy.clients.command.subprocess.run", fake)
    assert run_command(["kubectl", "version"], timeout=5) == "hello\n"
    assert fake.calls[0]["timeout"] == 5
    assert fake.calls[0]["check"] is False


def test_run_command_timeout_is_transient(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "sitedeploy.clients.command.subprocess.run",
        _FakeRun(subprocess.TimeoutExpired(["kubectl"], 5)),
    )
    with pytest.raises(TransientClientError, match="timed out"):
        run_command(["kubectl", "get"], timeout=5)


def test_run_command_missing_binary(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("sitedeploy.clients.command.subprocess.run", _FakeRun(FileNotFoundError("kubectl")))
    with pytest.raises(CommandError) as exc_info:
        run_command(["kubectl", "get"], timeout=5)
    assert exc_info.value.returncode == 127


def test_run_command_classifies_stderr(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "sitedeploy.clients.command.subprocess.run",
        _FakeRun(_fail("dial tcp: connection refused"), _fail("forbidden: user cannot get")),
    )
    with pytest.raises(TransientClientError):
        run_command(["kubectl", "get"], timeout=5)
    with pytest.raises(CommandError) as exc_info:
        run_command(["kubectl", "get"], timeout=5)
    assert "forbidden" in exc_info.value.stderr


def test_kubectl_namespace_exists(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRun(_ok("namespace/test1\n"), _fail('Error from server (NotFound): namespaces "test2" not found'))
    monkeypatch.setattr("sitedeploy.clients.command.subprocess.run", fake)
    client = KubectlClient(context="lab", retry_policy=_NO_WAIT)
    assert client.namespace_exists("test1") is True
    assert client.namespace_exists("test2") is False
    assert fake.calls[0]["args"] == ["kubectl", "--context", "lab", "get", "namespace", "test1", "-o", "name"]


def test_kubectl_read_is_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRun(_fail("i/o timeout"), _ok("Kubernetes control plane is running"))
    monkeypatch.setattr("sitedeploy.clients.command.subprocess.run", fake)
    KubectlClient(retry_policy=_NO_WAIT).ping()
    assert len(fake.calls) == 2


def test_kubectl_apply_sends_manifest_on_stdin(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRun(_ok("namespace/test1 created\n"))
    monkeypatch.setattr("sitedeploy.clients.command.subprocess.run", fake)
    KubectlClient().apply(Manifest("namespace.yaml", "kind: Namespace\n"))
    assert fake.calls[0]["args"] == ["kubectl", "apply", "-f", "-"]
    assert fake.calls[0]["input"] == "kind: Namespace\n"


def test_kubectl_apply_is_not_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRun(_fail("connection refused"), _ok())
    monkeypatch.setattr("sitedeploy.clients.command.subprocess.run", fake)
    with pytest.raises(TransientClientError):
        KubectlClient(retry_policy=_NO_WAIT).apply(Manifest("namespace.yaml", "kind: Namespace\n"))
    assert len(fake.calls) == 1


def test_kubectl_find_pod_and_read_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    encoded = base64.b64encode(b"s3cret").decode("ascii")
    fake = _FakeRun(_ok("mysql-0"), _ok(""), _ok(encoded), _fail("secrets \"x\" not found (NotFound)"))
    monkeypatch.setattr("sitedeploy.clients.command.subprocess.run", fake)
    client = KubectlClient(retry_policy=_NO_WAIT)
    assert client.find_pod("shared-services", "app=mysql") == "mysql-0"
    assert client.find_pod("shared-services", "app=mysql") is None
    assert client.read_secret("shared-services", "mysql", "root") == "s3cret"
    assert client.read_secret("shared-services", "x", "root") is None
    assert "jsonpath={.data.root}" in fake.calls[2]["args"]


def test_infisical_folder_and_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRun(_fail("Folder with this name already exists"), _ok())
    monkeypatch.setattr("sitedeploy.clients.command.subprocess.run", fake)
    store = InfisicalSecretStore(environment="prod", retry_policy=_NO_WAIT)
    store.ensure_folder("/wordpress/test1")
    store.set_secret("/wordpress/test1", "TEST1_MYSQL_PASSWORD", "pw")
    assert fake.calls[0]["args"][-3:] == ["--env=prod", "--path=/wordpress", "--name=test1"]
    assert fake.calls[1]["args"] == [
        "infisical",
        "secrets",
        "set",
        "TEST1_MYSQL_PASSWORD=pw",
        "--env=prod",
        "--path=/wordpress/test1",
    ]


def test_infisical_folder_error_propagates(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("sitedeploy.clients.command.subprocess.run", _FakeRun(_fail("unauthorized")))
    with pytest.raises(CommandError):
        InfisicalSecretStore().ensure_folder("/wordpress/test1")


def test_quote_identifier_rejects_injection() -> None:
    assert _quote_identifier("wp_test1") == "`wp_test1`"
    assert _quote_identifier("wp_my-site") == "`wp_my-site`"
    with pytest.raises(ClientError):
        _quote_identifier("wp_test1`; DROP DATABASE mysql; --")


def test_translate_connection_errors_are_transient() -> None:
    lost = OperationalError("SELECT 1", {}, Exception(2013, "Lost connection"))
    denied = ProgrammingError("GRANT", {}, Exception(1044, "Access denied"))
    assert isinstance(_translate(lost, "lookup"), TransientClientError)
    translated = _translate(denied, "grant")
    assert type(translated) is ClientError
    assert "Access denied" in str(translated)


def _engine_with(conn: MagicMock) -> MagicMock:
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=conn)
    context.__aexit__ = AsyncMock(return_value=False)
    engine = MagicMock()
    engine.connect.return_value = context
    engine.begin.return_value = context
    engine.dispose = AsyncMock()
    return engine


@pytest.mark.asyncio
async def test_mysql_client_statements() -> None:
    result = MagicMock()
    result.scalar.return_value = "wp_test1"
    conn = MagicMock()
    conn.execute = AsyncMock(return_value=result)
    engine = _engine_with(conn)
    client = MySQLDatabaseClient(engine, "db.local")

    assert await client.database_exists("wp_test1") is True
    await client.create_database("wp_test1", "utf8mb4", "utf8mb4_unicode_ci")
    await client.grant_all("wp_test1", "wordpress")
    await client.close()

    statements = [str(call.args[0]) for call in conn.execute.call_args_list]
    assert "information_schema.SCHEMATA" in statements[0]
    assert conn.execute.call_args_list[0].args[1] == {"name": "wp_test1"}
    assert statements[1] == "CREATE DATABASE IF NOT EXISTS `wp_test1` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
    assert statements[2] == "GRANT ALL PRIVILEGES ON `wp_test1`.* TO 'wordpress'@'%'"
    assert statements[3] == "FLUSH PRIVILEGES"
    engine.dispose.assert_awaited_once()


@pytest.mark.asyncio
async def test_mysql_client_translates_driver_errors() -> None:
    conn = MagicMock()
    conn.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception(2003, "Can't connect")))
    client = MySQLDatabaseClient(_engine_with(conn), "db.local")
    with pytest.raises(TransientClientError):
        await client.database_exists("wp_test1")

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from matrix_automation import __version__
from matrix_automation.engine import engine as engine_module
from matrix_automation.engine import main as main_module
from matrix_automation.engine.storage.database import Storage


@pytest.fixture(autouse=True)
def _keep_pytest_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(main_module, "configure_logging", lambda *_a, **_k: None)


def test_migrate_creates_database(
    write_env: Callable[..., Path], db_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    env_file = write_env(DB_FILE=db_path, MATRIX_ENABLED="false")

    assert main_module.main(["--env-file", str(env_file), "migrate"]) == 0

    assert db_path.exists()
    assert "Database is up to date" in capsys.readouterr().out
    storage = Storage.connect(db_path)
    try:
        assert storage.list_configured_workflows() == []
    finally:
        storage.close()


def test_invalid_configuration_exits_2(
    write_env: Callable[..., Path], capsys: pytest.CaptureFixture[str]
) -> None:
    env_file = write_env(MATRIX_ENABLED="false")

    assert main_module.main(["--env-file", str(env_file), "run"]) == 2
    assert "DB_FILE" in capsys.readouterr().err


def test_run_exits_1_when_start_up_fails(
    write_env: Callable[..., Path], db_path: Path, tmp_path: Path
) -> None:
    env_file = write_env(
        DB_FILE=db_path,
        MATRIX_ENABLED="false",
        WORKFLOWS_DEF_TOML_FILE=tmp_path / "missing.toml",
    )

    assert main_module.main(["--env-file", str(env_file), "run"]) == 1


def test_run_serves_until_server_returns(
    write_env: Callable[..., Path], db_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    served: list[tuple[str, int]] = []
    monkeypatch.setattr(
        engine_module, "_serve_with_uvicorn", lambda _app, host, port: served.append((host, port))
    )
    env_file = write_env(DB_FILE=db_path, MATRIX_ENABLED="false", WEBHOOK_LISTENER_PORT="9090")

    assert main_module.main(["--env-file", str(env_file), "run"]) == 0
    assert served == [("0.0.0.0", 9090)]


def test_subcommand_is_required() -> None:
    with pytest.raises(SystemExit):
        main_module.main([])


def test_version_flag_reports_package_version(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main_module.main(["--version"])

    assert excinfo.value.code == 0
    assert f"matrix-automation {__version__}" in capsys.readouterr().out

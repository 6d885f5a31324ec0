#!/usr/bin/env python3
"""Programmatic webhook example.

This demonstrates using the engine components directly:

* seed a workflow (webhook trigger + stdout step) into a SQLite database
* start the engine without chat integration
* fire the webhook in-process and watch the message reach stdout

The database path is passed as an argument (not read from `.env`).
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from fastapi import FastAPI
from fastapi.testclient import TestClient

from matrix_automation.engine.config import EngineSettings
from matrix_automation.engine.engine import Engine
from matrix_automation.engine.logging import configure_logging
from matrix_automation.engine.storage.database import Storage


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fire a webhook workflow (programmatic example).")
    parser.add_argument("--db", default="example.db", help="SQLite database file to use")
    parser.add_argument("--message", default="hello from a webhook", help="Message to send")
    parser.add_argument("--room", default="", help="Optional room to tag the message with")
    return parser.parse_args(argv)


def _seed(db: Path) -> None:
    storage = Storage.connect(db)
    try:
        if storage.find_workflow_by_name("example-echo") is None:
            workflow_id = storage.save_workflow(name="example-echo")
            storage.save_trigger(
                workflow_id=workflow_id,
                name="example-hook",
                kind="webhook",
                config={"url_suffix": "example"},
            )
            storage.save_workflow_step(
                workflow_id=workflow_id, name="print", kind="stdout", config={}
            )
    finally:
        storage.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    db = Path(args.db)
    _seed(db)

    settings = EngineSettings(_env_file=None, DB_FILE=db, MATRIX_ENABLED=False)
    configure_logging(settings.log_level)

    def serve_once(app: FastAPI, _host: str, _port: int) -> None:
        params = {"message": args.message}
        if args.room:
            params["room"] = args.room
        resp = TestClient(app).get("/webhooks-listener/example", params=params)
        print(f"Webhook answered {resp.status_code}: {resp.json()}")

    engine = Engine(settings, server_runner=serve_once)
    engine.start_up()
    engine.run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

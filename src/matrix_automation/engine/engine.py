"""The engine: owns every registry and drives the process lifecycle.

Start-up walks an explicit state machine (see :mod:`.state_machine`):

    created -> storage_connected -> data_loaded -> clients_ready -> running -> shut_down

Any start-up failure surfaces as :class:`StartupError` instead of ending the
process, so the CLI (or a test) decides what to do with it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

import uvicorn
from fastapi import FastAPI

from matrix_automation.engine.bots.registry import Bot, BotRegistry, ClientFactory, WakeUpError
from matrix_automation.engine.config import EngineSettings
from matrix_automation.engine.definitions import import_definitions
from matrix_automation.engine.mailer import EmailSender, SmtpEmailSender
from matrix_automation.engine.matrix.client import ChatClient, MatrixClient
from matrix_automation.engine.poller import PollScheduler
from matrix_automation.engine.state_machine import EngineState, IllegalTransitionError, transition
from matrix_automation.engine.storage.database import Storage
from matrix_automation.engine.workflow.payload import Payload
from matrix_automation.engine.workflow.registry import (
    DuplicateRegistrationError,
    TriggerRegistry,
)
from matrix_automation.engine.workflow.steps import build_step
from matrix_automation.engine.workflow.triggers import PollTrigger, WebhookTrigger, build_trigger
from matrix_automation.engine.workflow.workflow import Workflow, WorkflowNotFound
from matrix_automation.server.app import create_app

logger = logging.getLogger(__name__)

ServerRunner = Callable[[FastAPI, str, int], None]


class StartupError(RuntimeError):
    pass


class DataLoadError(RuntimeError):
    pass


def _serve_with_uvicorn(app: FastAPI, host: str, port: int) -> None:
    # log_config=None keeps the JSON handlers installed by configure_logging.
    uvicorn.run(app, host=host, port=port, log_config=None)


class Engine:
    def __init__(
        self,
        settings: EngineSettings,
        *,
        client_factory: ClientFactory | None = None,
        email_sender: EmailSender | None = None,
        server_runner: ServerRunner | None = None,
    ) -> None:
        self.settings = settings
        self.state = EngineState.CREATED

        self.storage: Storage | None = None
        self.workflows: dict[int, Workflow] = {}
        self.triggers = TriggerRegistry()
        self.bots = BotRegistry(settings.matrix_server_name)

        self._client_factory: ClientFactory = client_factory or self._matrix_client
        self._email_sender = (
            email_sender if email_sender is not None else SmtpEmailSender.from_settings(settings)
        )
        self._server_runner = server_runner or _serve_with_uvicorn
        self._poller = PollScheduler()
        self._sync_threads: list[threading.Thread] = []

    def _advance(self, to: EngineState) -> None:
        self.state = transition(current=self.state, to=to)
        logger.info("Engine state changed", extra={"state": self.state.value})

    def _matrix_client(self, _bot: Bot) -> ChatClient:
        return MatrixClient(
            homeserver_url=self.settings.matrix_homeserver_url,
            request_timeout=self.settings.matrix_request_timeout_seconds,
        )

    def start_up(self) -> None:
        """Connect storage, load data and (optionally) bring the bots online.

        Raises:
            StartupError: Wrapping whatever stopped start-up.
        """

        logger.info("Starting up engine")
        try:
            self.connect_storage()
            self.load_definitions()
            self.load_data()
            if self.settings.matrix_enabled:
                self.start_clients()
        except StartupError:
            raise
        except Exception as e:
            raise StartupError(f"Engine start-up failed: {e}") from e
        logger.info("Finished starting up engine")

    def connect_storage(self) -> None:
        if self.settings.database_path is None:
            raise StartupError("No database path configured")
        self.storage = Storage.connect(self.settings.database_path)
        self._advance(EngineState.STORAGE_CONNECTED)

    def _require_storage(self) -> Storage:
        if self.storage is None:
            raise IllegalTransitionError("Storage is not connected")
        return self.storage

    def load_definitions(self) -> None:
        """Import the optional TOML definitions file into storage."""

        path = self.settings.workflows_definition_file
        if path is None:
            return
        created = import_definitions(path, self._require_storage())
        logger.info(
            "Workflow definitions file processed",
            extra={"path": str(path), "imported": len(created)},
        )

    def load_data(self) -> None:
        """Build workflows, their steps and triggers from storage.

        Steps and triggers of workflows that are not loaded (inactive or missing)
        are skipped with a warning.

        Raises:
            DataLoadError: A record cannot be turned into a step or trigger, or a
                webhook suffix / poll name is registered twice.
        """

        storage = self._require_storage()

        for record in storage.list_configured_workflows():
            self.workflows[record.id] = Workflow(
                id=record.id, name=record.name, description=record.description
            )

        for step_record in storage.list_configured_workflow_steps():
            workflow = self.workflows.get(step_record.workflow_id)
            if workflow is None:
                logger.warning(
                    "Skipping step of unknown or inactive workflow",
                    extra={"step_id": step_record.id, "workflow_id": step_record.workflow_id},
                )
                continue
            try:
                step = build_step(step_record, bots=self.bots, email_sender=self._email_sender)
            except ValueError as e:
                raise DataLoadError(str(e)) from e
            workflow.add_step(step)
            logger.debug(
                "Added step to workflow",
                extra={"step": step.name, "workflow_id": workflow.id},
            )

        for trigger_record in storage.list_configured_triggers():
            if trigger_record.workflow_id not in self.workflows:
                logger.warning(
                    "Skipping trigger of unknown or inactive workflow",
                    extra={"trigger": trigger_record.name, "workflow_id": trigger_record.workflow_id},
                )
                continue
            try:
                trigger = build_trigger(trigger_record)
                trigger.bind(self)
                if isinstance(trigger, WebhookTrigger):
                    self.triggers.register_webhook(trigger)
                elif isinstance(trigger, PollTrigger):
                    trigger.request_timeout = self.settings.poll_request_timeout_seconds
                    self.triggers.register_poll(trigger)
            except (ValueError, DuplicateRegistrationError) as e:
                raise DataLoadError(str(e)) from e

        self._advance(EngineState.DATA_LOADED)
        logger.info(
            "Data loaded",
            extra={
                "workflows": len(self.workflows),
                "webhook_triggers": len(self.triggers.webhook_triggers()),
                "poll_triggers": len(self.triggers.poll_triggers()),
            },
        )

    def start_clients(self) -> None:
        """Log in the primary bot and wake up every stored bot, concurrently.

        Both tasks are joined before returning; then each registered client starts
        syncing on its own daemon thread.
        """

        storage = self._require_storage()
        primary = Bot(
            id=0,
            username=self.settings.matrix_username,
            password=self.settings.matrix_password,
            is_primary=True,
        )

        bots: list[Bot] = []
        for record in storage.list_active_bots():
            if record.username == primary.username:
                # The configured account is registered by the primary task.
                continue
            if record.is_primary:
                logger.warning(
                    "Ignoring primary flag on stored bot; the configured account is primary",
                    extra={"bot_id": record.id, "username": record.username},
                )
            bots.append(Bot(id=record.id, username=record.username, password=record.password))

        errors: list[BaseException] = []
        errors_lock = threading.Lock()

        def init_primary() -> None:
            try:
                self.bots.append(primary, self._client_factory(primary))
                logger.info("Primary Matrix client ready", extra={"username": primary.username})
            except Exception as e:
                logger.exception("Primary Matrix client failed to start")
                with errors_lock:
                    errors.append(e)

        def wake_up_bots() -> None:
            try:
                self.bots.wake_up_all(
                    bots,
                    self._client_factory,
                    timeout=self.settings.wake_up_timeout_seconds,
                )
            except WakeUpError as e:
                if self.settings.allow_partial_wake_up and len(e.failed_ids) < len(bots):
                    logger.error(
                        "Some bots could not wake up; continuing",
                        extra={"failed_ids": e.failed_ids},
                    )
                    return
                with errors_lock:
                    errors.append(e)
            except Exception as e:
                logger.exception("Waking up bots failed")
                with errors_lock:
                    errors.append(e)

        tasks = [
            threading.Thread(target=init_primary, name="matrix-primary"),
            threading.Thread(target=wake_up_bots, name="matrix-wake-up"),
        ]
        for task in tasks:
            task.start()
        for task in tasks:
            task.join()

        if errors:
            raise StartupError("; ".join(str(e) for e in errors)) from errors[0]

        self._start_syncing()
        self._advance(EngineState.CLIENTS_READY)

    def _start_syncing(self) -> None:
        for username, client in self.bots.clients():
            thread = threading.Thread(
                target=self._sync_client,
                args=(username, client),
                name=f"matrix-sync-{username}",
                daemon=True,
            )
            thread.start()
            self._sync_threads.append(thread)

    @staticmethod
    def _sync_client(username: str, client: ChatClient) -> None:
        try:
            client.sync()
        except Exception:
            logger.exception("Matrix sync stopped", extra={"username": username})

    def run_workflow(self, workflow_id: int, payload: Payload) -> Payload:
        workflow = self.workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(f"Workflow #{workflow_id} is not loaded")
        return workflow.run(payload, policy=self.settings.step_error_policy)

    def run(self) -> None:
        """Start the poll scheduler and serve webhooks until the server stops."""

        if self.state is EngineState.DATA_LOADED and self.settings.matrix_enabled:
            raise IllegalTransitionError("Matrix clients must be ready before running")
        self._advance(EngineState.RUNNING)

        try:
            self._poller.start(self.triggers.poll_triggers())
            logger.info(
                "Starting webhook listener",
                extra={"host": self.settings.listener_host, "port": self.settings.listener_port},
            )
            self._server_runner(
                create_app(self.triggers),
                self.settings.listener_host,
                self.settings.listener_port,
            )
        finally:
            self.shut_down()

    def shut_down(self) -> None:
        if self.state is EngineState.SHUT_DOWN:
            return

        self._poller.stop(timeout=1.0)
        for username, client in self.bots.clients():
            try:
                client.close()
            except Exception:
                logger.exception("Closing Matrix client failed", extra={"username": username})
        if self.storage is not None:
            self.storage.close()

        self._advance(EngineState.SHUT_DOWN)

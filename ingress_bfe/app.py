"""Application bootstrap for ingress-bfe.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → K8s client → pod info → controller → REST
              → controller run loop

Shutdown is graceful: the REST server and the controller are stopped in
reverse startup order, each wrapped independently so a failing stop does not
prevent the rest from shutting down. The process exits non-zero when a
component fails to start or the data plane dies on its own.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING, Any

from ingress_bfe.config import load_config
from ingress_bfe.controller.dataplane import DataPlaneExit, ExitKind
from ingress_bfe.errors import DataPlaneStartError
from ingress_bfe.models.config import ControllerConfig
from ingress_bfe.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class IngressBfeApp:
    """Application root. Owns every component and coordinates their lifecycle.

    ``stop()`` may be called any number of times, from a signal handler and
    from ``main()``; every caller waits for the same shutdown.
    """

    def __init__(self) -> None:
        self.config: ControllerConfig | None = None

        self._api_client: Any = None
        self._core_api: Any = None
        self._networking_api: Any = None
        self._pod_info: Any = None
        self._controller: Any = None
        self._rest_server: Any = None

        self._background_tasks: list[asyncio.Task[None]] = []
        self._controller_task: asyncio.Task[None] | None = None
        self._stop_task: asyncio.Future[None] | None = None
        self._done = asyncio.Event()

        self._running = False
        self.exit_code = 0
        self._log: structlog.stdlib.BoundLogger | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, self.config.log.format)
        self._log = get_logger("app")
        self._log.info("ingress-bfe starting", version=_version())

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 4. Pod identity (optional) ----------------------------------
        await self._start_pod_info()

        # --- 5. Controller -----------------------------------------------
        self._build_controller()

        # --- 6. REST API -------------------------------------------------
        await self._start_rest()

        # --- 7. Controller run loop --------------------------------------
        self._controller_task = asyncio.create_task(self._run_controller(), name="controller")

        self._running = True
        self._log.info("ingress-bfe started", port=self.config.api.port)

    async def _start_k8s_client(self) -> None:
        """Initialise the kubernetes-asyncio client from in-cluster config or kubeconfig."""
        assert self._log is not None
        self._log.debug("starting k8s client")
        try:
            import kubernetes_asyncio.config as k8s_config
            from kubernetes_asyncio import client as k8s_client

            try:
                k8s_config.load_incluster_config()
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s client configured from kubeconfig")

            self._api_client = k8s_client.ApiClient()
            self._core_api = k8s_client.CoreV1Api(self._api_client)
            self._networking_api = k8s_client.NetworkingV1Api(self._api_client)
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_pod_info(self) -> None:
        assert self._log is not None
        assert self.config is not None
        if not self.config.store.watch_self_pod:
            return
        try:
            from ingress_bfe.pod import get_pod_details

            self._pod_info = await get_pod_details(self._core_api)
            self._log.info("pod identity resolved", pod=self._pod_info.name, namespace=self._pod_info.namespace)
        except Exception as exc:
            raise _ComponentError("pod_info", exc) from exc

    def _build_controller(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            from ingress_bfe.controller import BfeController
            from ingress_bfe.store.recorder import KubeEventRecorder

            self._controller = BfeController(
                self.config,
                core_api=self._core_api,
                networking_api=self._networking_api,
                recorder=KubeEventRecorder(self._core_api),
                pod_info=self._pod_info,
            )
        except Exception as exc:
            raise _ComponentError("controller", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting rest api")
        try:
            import uvicorn

            from ingress_bfe.api import build_app

            fastapi_app = build_app(controller=self._controller)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",  # noqa: S104
                port=self.config.api.port,
                log_config=None,
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    async def _run_controller(self) -> None:
        assert self._log is not None
        try:
            result: DataPlaneExit | None = await self._controller.run()
        except DataPlaneStartError as exc:
            self._log.critical("data plane failed to start", error=str(exc))
            self.exit_code = 1
            return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._log.critical("controller crashed", error=str(exc), exc_info=True)
            self.exit_code = 1
            return
        finally:
            self._done.set()

        if result is not None:
            self.exit_code = 0 if result.kind is ExitKind.CLEAN else 1
            self._log.warning(
                "data plane exited, controller stopping",
                returncode=result.returncode,
                kind=str(result.kind),
            )

    async def wait(self) -> None:
        """Block until the controller run loop ends."""
        await self._done.wait()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self._shutdown())
        await asyncio.shield(self._stop_task)

    async def _shutdown(self) -> None:
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("ingress-bfe shutting down")
        self._running = False

        await self._stop_rest()
        await self._stop_component("controller", self._controller)

        if self._controller_task is not None and not self._controller_task.done():
            _, pending = await asyncio.wait({self._controller_task}, timeout=_SHUTDOWN_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        self._done.set()

        await self._stop_k8s_client()
        log.info("ingress-bfe stopped")

    async def _stop_rest(self) -> None:
        if self._rest_server is not None:
            self._rest_server.should_exit = True
        if self._background_tasks:
            _, pending = await asyncio.wait(self._background_tasks, timeout=_SHUTDOWN_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))

    async def _stop_k8s_client(self) -> None:
        """Close the kubernetes-asyncio ApiClient connection pool."""
        if self._api_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._api_client.close()
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))
        self._api_client = None


def _version() -> str:
    from ingress_bfe import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown or data plane exit."""
    app = IngressBfeApp()
    loop = asyncio.get_running_loop()

    def _request_shutdown() -> None:
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        await app.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        await app.stop()

    if app.exit_code:
        raise SystemExit(app.exit_code)


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main())

"""DevTwin entry point.

RUN_MODE=integrated (default) serves the development backend and the chat
page from one uvicorn server on PORT. RUN_MODE=separate starts the backend
on PORT and the chat page on UI_PORT as two processes, and points the page
at the spawned backend through API_BASE_URL.
"""

import asyncio
import logging
import os
import subprocess
import sys
from enum import Enum
from urllib.parse import urlsplit

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Load environment variables before any other imports that might need them
load_dotenv()

logger = logging.getLogger(__name__)

_WILDCARD_HOSTS = {"", "0.0.0.0", "::"}
_TRUTHY = {"1", "true", "yes", "on"}


class RunMode(str, Enum):
    INTEGRATED = "integrated"
    SEPARATE = "separate"


class ServerSettings(BaseModel):
    """How the processes are started.

    Attributes:
        mode: Integrated single server or separate backend and page.
        host: Interface both servers bind to.
        port: Backend port (the only port in integrated mode).
        ui_port: Chat page port in separate mode.
        reload: Run the backend with uvicorn --reload (development only).
        api_base_url: Backend the page talks to; None means the local one.
        log_level: Root logging level.
        storage_secret: Secret signing NiceGUI's per-browser storage.
    """

    model_config = ConfigDict(validate_default=True)

    mode: RunMode = Field(
        default_factory=lambda: RunMode(os.getenv("RUN_MODE", "integrated").lower())
    )
    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "8000")), gt=0, lt=65536)
    ui_port: int = Field(
        default_factory=lambda: int(os.getenv("UI_PORT", "8080")), gt=0, lt=65536
    )
    reload: bool = Field(
        default_factory=lambda: os.getenv("DEV_RELOAD", "false").lower() in _TRUTHY
    )
    api_base_url: str | None = Field(default_factory=lambda: os.getenv("API_BASE_URL") or None)
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    storage_secret: str = Field(
        default_factory=lambda: os.getenv("NICEGUI_STORAGE_SECRET", "devtwin-secret"),
        min_length=1,
    )

    @field_validator("api_base_url")
    @classmethod
    def strip_base_url(cls, v: str | None) -> str | None:
        return v.strip().rstrip("/") if v else None

    @model_validator(mode="after")
    def check_ports(self) -> "ServerSettings":
        if self.mode is RunMode.SEPARATE and self.port == self.ui_port:
            raise ValueError(
                f"PORT and UI_PORT must differ in separate mode, both are {self.port}"
            )
        return self

    @property
    def local_backend_url(self) -> str:
        host = "localhost" if self.host in _WILDCARD_HOSTS else self.host
        return f"http://{host}:{self.port}"

    def page_base_url(self) -> str:
        """Backend URL handed to the chat page.

        An explicit API_BASE_URL wins. A local URL on a different port than
        the backend being started is logged as a warning.
        """
        if self.api_base_url is None:
            return self.local_backend_url
        parts = urlsplit(self.api_base_url)
        local_hosts = {"localhost", "127.0.0.1", self.host}
        if parts.hostname in local_hosts and parts.port not in (None, self.port):
            logger.warning(
                f"API_BASE_URL {self.api_base_url} does not match the backend "
                f"started on port {self.port}"
            )
        return self.api_base_url

    def backend_command(self) -> list[str]:
        command = [
            sys.executable,
            "-m",
            "uvicorn",
            "devtwin.api.app:app",
            "--host",
            self.host,
            "--port",
            str(self.port),
            "--log-level",
            self.log_level.lower(),
        ]
        if self.reload:
            command.append("--reload")
        return command

    def page_command(self) -> list[str]:
        return [sys.executable, "-c", "from devtwin.ui.chat_page import main; main()"]

    def page_env(self) -> dict[str, str]:
        return {
            **os.environ,
            "API_BASE_URL": self.page_base_url(),
            "HOST": self.host,
            "UI_PORT": str(self.ui_port),
            "NICEGUI_STORAGE_SECRET": self.storage_secret,
        }


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def run_integrated(settings: ServerSettings) -> None:
    """Serve the backend routes and the chat page from one server."""
    import uvicorn
    from nicegui import ui

    from devtwin.api.app import create_app
    from devtwin.ui.chat_page import chat_page  # noqa: F401 - Registers the page

    # Pages build their ChatConfig from the environment
    os.environ["API_BASE_URL"] = settings.page_base_url()

    app = create_app()
    ui.run_with(app, title="DevTwin", storage_secret=settings.storage_secret)

    logger.info(f"Chat page on {settings.local_backend_url}/, API docs on /docs")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


async def _supervise(processes: dict[str, subprocess.Popen]) -> str:
    """Wait until any child exits and return its name."""
    while True:
        for name, proc in processes.items():
            if proc.poll() is not None:
                return name
        await asyncio.sleep(1)


def run_separate(settings: ServerSettings) -> None:
    """Run the backend and the chat page as two child processes."""
    page_url = settings.page_base_url()
    logger.info(f"Backend on {settings.local_backend_url} (reload={settings.reload})")
    logger.info(f"Chat page on port {settings.ui_port}, talking to {page_url}")

    processes = {
        "backend": subprocess.Popen(settings.backend_command()),
        "chat page": subprocess.Popen(settings.page_command(), env=settings.page_env()),
    }
    try:
        exited = asyncio.run(_supervise(processes))
        logger.warning(f"The {exited} process exited, stopping the other one")
    except KeyboardInterrupt:
        logger.info("Shutting down servers...")
    finally:
        for proc in processes.values():
            proc.terminate()
        for proc in processes.values():
            proc.wait()


def main() -> None:
    settings = ServerSettings()
    configure_logging(settings.log_level)
    logger.info(f"Starting DevTwin in {settings.mode.value} mode")

    if settings.mode is RunMode.SEPARATE:
        run_separate(settings)
    else:
        run_integrated(settings)


if __name__ == "__main__":
    main()

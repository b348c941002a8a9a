from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from mailbox_verifier.api import create_app
from mailbox_verifier.config_loader import load_settings
from mailbox_verifier.core import MailboxVerifierCore
from mailbox_verifier.logger import configure_logging


if __name__ == "__main__":
    settings = load_settings()
    configure_logging(settings.log_level)

    # Create service instance but don't start it yet - let uvicorn handle the event loop
    service = MailboxVerifierCore(db_path=settings.db_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        yield
        # Shutdown: cancel in-flight tests and stop the sweep loop
        await service.stop()

    app = create_app(service, api_token=settings.api_token, lifespan=lifespan)

    uvicorn.run(app, host=settings.http_host, port=settings.http_port)

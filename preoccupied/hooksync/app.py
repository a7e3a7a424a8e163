"""
FastAPI webhook application for the hooksync service.

:author: Christopher O'Brien <obriencj@preoccupied.net>
:license: GNU General Public License v3
:ai-assistant: Auto via Cursor
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request
from fastapi.responses import RedirectResponse

from .config import ConfigStore
from .dispatcher import Delivery, EventDispatcher, InvalidSignature, UnknownOwner


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def app_startup(app: FastAPI) -> None:
    """
    Load the configuration store unless one was supplied to create_app
    """

    if getattr(app.state, 'dispatcher', None) is not None:
        return

    try:
        store = ConfigStore.load()
    except Exception as e:
        logger.error(f'Failed to load configuration: {e}', exc_info=True)
        raise

    app.state.store = store
    app.state.dispatcher = EventDispatcher(store)


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    """
    Lifespan event handler for the app
    """

    logger.info('Starting up...')

    app_startup(app)

    try:
        yield
    finally:

        logger.info('Shutting down...')


def create_app(store: Optional[ConfigStore] = None,
               dispatcher: Optional[EventDispatcher] = None) -> FastAPI:
    """
    Build the webhook application. Without a store, the configuration is
    loaded from CONFIG_PATH when the app starts.
    """

    app = FastAPI(lifespan=app_lifespan)

    if dispatcher is None and store is not None:
        dispatcher = EventDispatcher(store)
    if dispatcher is not None:
        app.state.store = dispatcher.store
        app.state.dispatcher = dispatcher


    @app.post('/', status_code=202)
    async def webhook(
            request: Request,
            background_tasks: BackgroundTasks,
            x_github_event: str = Header(None),
            x_github_delivery: str = Header(None),
            x_hub_signature_256: str = Header(None)):
        """
        Receive a GitHub webhook delivery
        """

        dispatcher: EventDispatcher = request.app.state.dispatcher

        # the signature covers these exact bytes, so keep them as-is
        body = await request.body()
        try:
            payload = json.loads(body)
        except ValueError:
            raise HTTPException(status_code=400, detail='Invalid JSON payload')

        delivery = Delivery(
            event=x_github_event,
            delivery_id=x_github_delivery,
            signature=x_hub_signature_256,
            body=body,
            payload=payload)

        if delivery.owner is None:
            raise HTTPException(status_code=400, detail='Missing repository owner')

        try:
            dispatcher.authenticate(delivery)
        except UnknownOwner as e:
            raise HTTPException(status_code=404, detail=str(e))
        except InvalidSignature as e:
            raise HTTPException(status_code=401, detail=str(e))

        background_tasks.add_task(dispatcher.process, delivery)
        return {'status': 'accepted'}


    @app.api_route('/', methods=['GET', 'HEAD', 'PUT', 'PATCH', 'DELETE'],
                   include_in_schema=False)
    async def redirect(request: Request):
        """
        Anything but a POST is sent to the project page
        """

        store: ConfigStore = request.app.state.store
        return RedirectResponse(store.config.global_.redirect_url)


    return app


app = create_app()


# The end.

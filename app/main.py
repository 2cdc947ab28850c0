import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.database import Connection
from app.migrations import prepare_storage
from app.repositories.todo_repo import TodoRepository
from app.services.todo_list_service import TodoListService
from app.services.user_service import UserService

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def create_app(database_url: str | None = None) -> FastAPI:
    """
    Build the application. Storage is prepared in the lifespan before any
    service exists; a failing migration aborts startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        connection = Connection(database_url)
        await connection.open()
        try:
            ready = await prepare_storage(connection)
            app.state.ready = ready
            if ready.normalized:
                app.state.users = UserService(ready)
                app.state.lists = TodoListService(ready)
                app.state.todos = TodoRepository(ready, app.state.users, app.state.lists)
            else:
                app.state.todos = TodoRepository(ready)
            yield
        finally:
            await connection.close()

    app = FastAPI(title="Todo Lists", lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        return {"status": "ok", "schema": request.app.state.ready.shape.value}

    return app


app = create_app()

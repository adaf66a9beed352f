"""Entry point for the Repo Rank FastAPI application."""

import os
import shutil

# GitPython needs to find the git executable before it is first imported
git_path = os.getenv("GIT_PYTHON_GIT_EXECUTABLE") or shutil.which("git")
if git_path:
    os.environ["GIT_PYTHON_GIT_EXECUTABLE"] = git_path
    import git
    git.refresh(path=git_path)
else:
    raise RuntimeError(
        "Git executable not found. Please install Git from https://git-scm.com/downloads "
        "or set GIT_PYTHON_GIT_EXECUTABLE environment variable to the path of git"
    )

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.routes import router as api_router
from utils.settings import setup_logging

setup_logging()

app = FastAPI(title="Repo Rank API", version="0.1.0")

# The API is public and read-only, so every origin may call it.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)

WELCOME = (
    "Welcome to Repo Rank API! Use /analyze/:owner/:repo to analyze a repository's commits."
)


@app.exception_handler(StarletteHTTPException)
async def plain_http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Unknown paths and methods answer in plain text."""
    if exc.status_code == 404:
        return PlainTextResponse("Not Found", status_code=404)
    if exc.status_code == 405:
        return PlainTextResponse("Method not allowed", status_code=405)
    return await http_exception_handler(request, exc)


@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    """
    Welcome message, also usable as a heartbeat.

    Returns:
        str: Usage hint.
    """
    return WELCOME


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "3000")), timeout_keep_alive=120)

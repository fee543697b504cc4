import uvicorn

from jobcleanup.core.config import get_settings


def serve() -> None:
    settings = get_settings()
    uvicorn.run("jobcleanup.main:app", host=settings.serve_host, port=settings.serve_port)


if __name__ == "__main__":
    serve()

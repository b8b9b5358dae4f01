import uvicorn

from roster.api import create_app
from roster.config import get_settings
from roster.logging_config import configure_logging

settings = get_settings()
configure_logging(settings.log_level)

app = create_app(settings)


if __name__ == "__main__":
    uvicorn.run(
        "roster.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )

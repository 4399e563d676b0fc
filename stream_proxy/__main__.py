import logging
import logging.config

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from stream_proxy.bootstrap import StartupOverrides, resolve_startup
from stream_proxy.server import create_app
from stream_proxy.vars import LOG_LEVEL


def main() -> None:
    # Startup messages are logged before uvicorn would configure its loggers.
    logging.config.dictConfig(LOGGING_CONFIG)
    logging.getLogger("uvicorn.error").setLevel(LOG_LEVEL.upper())

    runtime = resolve_startup(StartupOverrides.from_env())
    uvicorn.run(
        create_app(runtime),
        host=runtime.listen.host,
        port=runtime.listen.port,
        log_level=LOG_LEVEL,
        timeout_keep_alive=120,
    )


if __name__ == "__main__":
    main()

import logging
import threading

from flask import Flask

logger = logging.getLogger(__name__)

app = Flask('shoreguard-keepalive')


@app.route('/')
def home() -> str:
    return 'Bot is alive!'


def run_server(port: int) -> None:
    logger.info('Server running on port %s', port)
    app.run(host='0.0.0.0', port=port, threaded=True)


def start_keep_alive(port: int) -> threading.Thread:
    """Starts the keep-alive HTTP server in a daemon thread.

    Uptime monitors ping ``GET /`` to keep hosted instances awake.

    Args:
        port: TCP port to listen on.

    Returns:
        The started server thread.
    """
    thread = threading.Thread(target=run_server, args=(port,), name='keep-alive', daemon=True)
    thread.start()
    return thread

# src/server.py
# Servo Sequence Server
# Main server - port 3001

import sys
import logging
from pathlib import Path

from aiohttp import web
import aiohttp_cors

# Make src/ importable when run as a script
SRC_ROOT = Path(__file__).parent
PROJECT_ROOT = SRC_ROOT.parent
sys.path.insert(0, str(SRC_ROOT))

from lib.config_loader import load_server_config
from lib.connection_logger import create_file_logger, attach_file_handler
from lib.servo import (
    SequenceStore,
    SequencePlayer,
    PlaybackTiming,
    DeviceListener,
    DeviceUnavailableError,
    open_channel,
)
import sequence_api
from sequence_api import ClientGateway

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

GATEWAY_KEY = web.AppKey("gateway", ClientGateway)
LISTENER_KEY = web.AppKey("listener", DeviceListener)


def _resolve(path):
    path = Path(path)
    return path if path.is_absolute() else PROJECT_ROOT / path


# =============================================================================
# App Setup
# =============================================================================

def create_app(config, channel):
    """
    Create and configure the aiohttp application.

    Args:
        config: Dict from load_server_config().
        channel: Open SerialChannel shared by the player, listener and moves.
    """
    storage = config["storage"]
    http_cfg = config["http"]

    store = SequenceStore(
        store_path=_resolve(storage["sequences_file"]),
        export_path=_resolve(storage["export_file"]),
    )
    player = SequencePlayer(channel, store, timing=PlaybackTiming.from_config(config["playback"]))
    gateway = ClientGateway(channel, store, player, import_path=_resolve(storage["import_file"]))
    player.on_device_error = gateway.report_device_error
    listener = DeviceListener(channel, store, notify=gateway.broadcast)

    app = web.Application()
    app[GATEWAY_KEY] = gateway
    app[LISTENER_KEY] = listener

    # Setup CORS
    cors = aiohttp_cors.setup(app, defaults={
        http_cfg["cors_origin"]: aiohttp_cors.ResourceOptions(
            allow_credentials=True,
            expose_headers="*",
            allow_headers="*",
            allow_methods=["GET", "POST"],
        )
    })

    sequence_api.setup_routes(app, gateway, cors)

    # Static files - client UI
    static_path = _resolve(http_cfg["static_dir"])
    if static_path.exists():
        app.router.add_static('/static/', static_path)
        logger.info(f"Serving static files from: {static_path}")

        async def index_redirect(request):
            raise web.HTTPFound('/static/index.html')

        app.router.add_get('/', index_redirect)

    # Startup/cleanup
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    return app


async def on_startup(app):
    app[LISTENER_KEY].start()


async def on_cleanup(app):
    """Stop scheduling playback, stop reading the device, close the port."""
    gateway = app[GATEWAY_KEY]
    await gateway.player.shutdown()
    await app[LISTENER_KEY].stop()
    gateway.channel.disconnect()


def main(argv=None):
    import argparse
    parser = argparse.ArgumentParser(description='Servo Sequence Server')
    parser.add_argument('--port', '-p', type=int, default=None, help='HTTP port (default: from config, 3001)')
    parser.add_argument('--serial-port', '-s', default=None, help='Serial port (default: auto-discover)')
    parser.add_argument('--config', '-c', default=None, help='Path to server_config.yaml')
    args = parser.parse_args(argv)

    config = load_server_config(args.config)
    http_port = args.port or config["http"]["port"]
    serial_cfg = config["serial"]

    # File logging: server events + HTTP access log
    attach_file_handler("", "server.log")
    access_logger = create_file_logger("aiohttp.access", "access.log")

    try:
        channel = open_channel(
            port=args.serial_port or serial_cfg["port"],
            baudrate=serial_cfg["baudrate"],
            read_timeout=serial_cfg["read_timeout_sec"],
        )
    except DeviceUnavailableError as e:
        logger.error(f"Cannot start without a serial device: {e}")
        return 1

    app = create_app(config, channel)
    logger.info(f"Starting Servo Sequence Server on port {http_port}")
    web.run_app(app, host=config["http"]["host"], port=http_port, access_log=access_logger)
    return 0


if __name__ == '__main__':
    sys.exit(main())

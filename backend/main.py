"""
LocalSend Lite — application factory and command-line entry point.

``serve`` runs the LocalSend v2 receiver (and the local control API) over
HTTPS; ``send`` pushes a file or directory to a peer and exits.
"""

import argparse
import asyncio
import logging
import signal
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from rich.console import Console
from rich.prompt import Confirm

from api.routes import protocol_router, router
from config import (
    API_HOST,
    APP_NAME,
    CONFIG_DIR,
    DEFAULT_SAVE_DIR,
    LOCALSEND_PORT,
)
from security.crypto import ensure_certificate
from security.identity import build_device_info
from transfer.errors import TransferCancelled, TransferError
from transfer.manager import TransferManager
from transfer.models import PrepareUploadRequest
from transfer.progress import RichProgressSink

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

console = Console(stderr=True)


def create_app(manager: TransferManager) -> FastAPI:
    """Build the FastAPI app around an existing TransferManager."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {APP_NAME} as {manager.device_info.alias}")
        await manager.start()
        try:
            yield
        finally:
            logger.info(f"Shutting down {APP_NAME}...")
            await manager.stop()

    app = FastAPI(title=APP_NAME, version="1.0.0", lifespan=lifespan)
    app.state.manager = manager
    app.include_router(protocol_router)
    app.include_router(router)
    return app


async def _confirm_transfer(request: PrepareUploadRequest) -> bool:
    names = ", ".join(meta.file_name for meta in request.files.values())
    question = f"Accept {len(request.files)} file(s) from {request.info.alias}? ({names})"
    return await asyncio.to_thread(Confirm.ask, question, console=console)


def serve(args: argparse.Namespace) -> None:
    import uvicorn

    cert_path, key_path, fingerprint = ensure_certificate(Path(args.config_dir))
    device_info = build_device_info(fingerprint, port=args.port, alias=args.alias)
    manager = TransferManager(
        device_info,
        save_dir=args.save_dir,
        accept_callback=_confirm_transfer if args.confirm else None,
    )
    sink = RichProgressSink(console)
    manager.on_event(sink.handle_event)

    sink.start()
    try:
        uvicorn.run(
            create_app(manager),
            host=args.host,
            port=args.port,
            ssl_certfile=str(cert_path),
            ssl_keyfile=str(key_path),
            log_level="info",
        )
    finally:
        sink.stop()


async def _send(args: argparse.Namespace) -> int:
    _, _, fingerprint = ensure_certificate(Path(args.config_dir))
    device_info = build_device_info(fingerprint, alias=args.alias)
    manager = TransferManager(device_info)
    sink = RichProgressSink(console)
    manager.on_event(sink.handle_event)

    send_task = asyncio.create_task(
        manager.send(args.to, args.path, port=args.port, include_preview=args.preview)
    )

    def _interrupt() -> None:
        # Abort the running upload through the registry; before the
        # handshake has produced a session there is nothing registered.
        if not manager.registry.cancel_all():
            send_task.cancel()

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, _interrupt)
    except NotImplementedError:  # Windows event loops
        pass

    sink.start()
    try:
        response = await send_task
    except (asyncio.CancelledError, TransferCancelled):
        console.print("[yellow]Send cancelled[/]")
        return 130
    except (TransferError, OSError) as e:
        console.print(f"[red]Send failed:[/] {e}")
        return 1
    finally:
        sink.stop()

    if response is None:
        console.print("Finished (no file transfer needed)")
    else:
        console.print(f"[green]Sent {len(response.files)} file(s) to {args.to}[/]")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="localsend-lite", description=APP_NAME)
    parser.add_argument("--config-dir", default=str(CONFIG_DIR), help="certificate directory")
    parser.add_argument("--alias", default=None, help="device name shown to peers")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="receive files from LocalSend peers")
    p_serve.add_argument("--host", default=API_HOST)
    p_serve.add_argument("--port", type=int, default=LOCALSEND_PORT)
    p_serve.add_argument("--save-dir", default=DEFAULT_SAVE_DIR)
    p_serve.add_argument("--confirm", action="store_true", help="ask before accepting a transfer")

    p_send = sub.add_parser("send", help="send a file or directory to a peer")
    p_send.add_argument("path")
    p_send.add_argument("--to", required=True, help="receiver address")
    p_send.add_argument("--port", type=int, default=LOCALSEND_PORT)
    p_send.add_argument("--preview", action="store_true", help="embed small text files as clipboard previews")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "serve":
        serve(args)
        return 0
    return asyncio.run(_send(args))


if __name__ == "__main__":
    sys.exit(main())

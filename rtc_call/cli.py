"""Unified CLI for rtc-call using Click."""

import asyncio
import sys

import click
from loguru import logger

from rtc_call.exceptions import SignalingError
from rtc_call.room import resolve_room_code
from rtc_call.rtc_peer import run_peer

LOG_LEVELS = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Minimum level of log messages written to stderr.",
)
def cli(log_level):
    logger.remove()
    logger.add(sys.stderr, level=log_level.upper())


# =============================================================================
# Room Commands
# =============================================================================


@cli.command()
@click.argument("code", required=False)
def room(code):
    """Print a usable room code.

    CODE is reused verbatim when it is a valid room code (xxx-xxxx-xxx, a
    leading '#' is allowed). Otherwise a new random code is generated.

    Example:
        rtc-call room
        rtc-call room abc-defg-hij
    """
    click.echo(resolve_room_code(code))


# =============================================================================
# Call Commands
# =============================================================================


@cli.command()
@click.option(
    "--room",
    "-r",
    "room_code",
    type=str,
    required=False,
    help="Room code to join. A new room is created if omitted or invalid.",
)
@click.option(
    "--polite/--impolite",
    default=None,
    help="Fix this endpoint's negotiation role. The two peers must pick opposite roles. "
    "Derived from peer ids when omitted.",
)
@click.option(
    "--signaling",
    "-s",
    "signaling_url",
    type=str,
    required=False,
    help="Signaling relay URL (e.g. ws://localhost:8080). Overrides config.",
)
@click.option(
    "--play-from",
    type=click.Path(),
    required=False,
    help="Media file or capture device to send to the peer.",
)
@click.option(
    "--record-to",
    type=click.Path(),
    required=False,
    help="File to record the peer's media to.",
)
def join(room_code, polite, signaling_url, play_from, record_to):
    """Join a call and negotiate media with the other peer in the room.

    Share the printed room code with the other peer so they can join the
    same room.

    Example:
        rtc-call join --room abc-defg-hij --play-from video.mp4
    """
    code = resolve_room_code(
        room_code, publish=lambda new_code: click.echo(f"Created room {new_code}")
    )
    click.echo(f"Welcome to room #{code}")

    try:
        run_peer(
            code,
            polite=polite,
            signaling_url=signaling_url,
            play_from=play_from,
            record_to=record_to,
        )
    except SignalingError as e:
        logger.error(str(e))
        sys.exit(1)


@cli.command()
@click.option("--host", default="localhost", show_default=True, help="Host to bind to.")
@click.option("--port", default=8080, show_default=True, type=int, help="Port to listen on.")
def serve(host, port):
    """Run the signaling relay."""
    from rtc_call.signaling_server import serve as serve_relay

    try:
        asyncio.run(serve_relay(host, port))
    except KeyboardInterrupt:
        logger.info("Server stopped")


if __name__ == "__main__":
    cli()

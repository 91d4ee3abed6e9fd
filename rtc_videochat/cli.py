"""Unified CLI for rtc-videochat using Click."""

import logging
import sys

import click
from loguru import logger

from rtc_videochat.config import get_config
from rtc_videochat.rtc_call import run_call
from rtc_videochat.server.relay_server import run_relay_server


@click.group()
def cli():
    pass


# =============================================================================
# Relay Server
# =============================================================================


@cli.command()
@click.option("--host", type=str, default=None, help="Interface to bind (default: config or localhost).")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: config or 3000).")
@click.option(
    "--max-message-size",
    type=int,
    default=None,
    help="Largest websocket frame accepted, in bytes (default: 16MB).",
)
def serve(host, port, max_message_size):
    """Run the signaling relay server.

    Clients that join the same room receive each other's offers, answers,
    ICE candidates, chat messages and files.

    Example:
        rtc-videochat serve --host 0.0.0.0 --port 3000
    """
    config = get_config()
    if host is None:
        host = config.server.host
    if port is None:
        port = config.server.port
    if max_message_size is None:
        max_message_size = config.server.max_message_size

    logging.basicConfig(level=logging.INFO)
    logger.info(f"Starting relay on {host}:{port}")
    run_relay_server(host=host, port=port, max_message_size=max_message_size)


# =============================================================================
# Call Client
# =============================================================================


@cli.command()
@click.option("--room", "-r", type=str, default=None, help="Room to join (required unless set in config).")
@click.option("--server", "-s", type=str, default=None, help="Relay websocket URL, e.g. ws://localhost:3000.")
@click.option("--username", "-u", type=str, default=None, help="Display name shown to the other peer.")
@click.option(
    "--media-file",
    type=str,
    default=None,
    help="Camera device or media file to stream (default: the system camera).",
)
@click.option("--media-format", type=str, default=None, help="FFmpeg input format, e.g. v4l2.")
@click.option(
    "--ice-server",
    "ice_servers",
    multiple=True,
    help="STUN/TURN URL. May be given more than once.",
)
@click.option(
    "--answer-with-media/--answer-without-media",
    default=None,
    help="Send your camera when answering a call.",
)
@click.option(
    "--downloads-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Where received files are saved.",
)
def call(room, server, username, media_file, media_format, ice_servers, answer_with_media, downloads_dir):
    """Join a room and make or receive video calls from the terminal.

    Type /call to call the other people in the room, /end to hang up and
    /file PATH to share a file. Anything else is sent as chat.

    Example:
        rtc-videochat call --room standup --username alice
    """
    config = get_config()
    room = room or config.client.room
    if not room:
        logger.error("No room given. Use --room or set client.room in the config file.")
        sys.exit(1)

    try:
        run_call(
            server_url=server or config.get_websocket_url(),
            room=room,
            username=username or config.client.username,
            media_file=media_file or config.client.media_file,
            media_format=media_format or config.client.media_format,
            ice_servers=list(ice_servers) or config.client.ice_servers,
            answer_with_media=(
                config.client.answer_with_media if answer_with_media is None else answer_with_media
            ),
            downloads_dir=downloads_dir or config.client.downloads_dir,
        )
    except Exception as e:
        logger.error(f"Call failed: {e}")
        sys.exit(1)


# =============================================================================
# Config Commands (subgroup)
# =============================================================================


@cli.group(name="config")
def config_group():
    """Inspect rtc-videochat configuration."""
    pass


@config_group.command(name="show")
def config_show():
    """Print the effective configuration."""
    config = get_config()
    click.echo(f"Environment:      {config.environment}")
    click.echo(f"Config file:      {config.config_file or '(none)'}")
    click.echo(f"Signaling URL:    {config.get_websocket_url()}")
    click.echo("")
    click.echo("Server:")
    click.echo(f"  Host:             {config.server.host}")
    click.echo(f"  Port:             {config.server.port}")
    click.echo(f"  Max message size: {config.server.max_message_size}")
    click.echo("")
    click.echo("Client:")
    click.echo(f"  Username:          {config.client.username}")
    click.echo(f"  Room:              {config.client.room or '(none)'}")
    click.echo(f"  Media file:        {config.client.media_file or '(default camera)'}")
    click.echo(f"  ICE servers:       {', '.join(config.client.ice_servers) or '(none)'}")
    click.echo(f"  Answer with media: {config.client.answer_with_media}")
    click.echo(f"  Downloads dir:     {config.client.downloads_dir}")


if __name__ == "__main__":
    cli()

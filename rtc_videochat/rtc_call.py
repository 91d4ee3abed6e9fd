"""Entry point for the interactive console call client."""

import asyncio
import logging
from typing import List, Optional

import click
from loguru import logger
from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout

from rtc_videochat.client.call_client import CallClient
from rtc_videochat.client.media import MediaSource
from rtc_videochat.client.presentation import ConsolePresentation

HELP_TEXT = """Commands:
  /call         start a video call with the room
  /end          hang up
  /mute         stop sending microphone audio
  /unmute       resume sending microphone audio
  /file PATH    share a file with the room
  /name NAME    change your display name
  /quit         leave
Anything else is sent as a chat message."""


async def handle_command(client: CallClient, line: str) -> bool:
    """Apply one line of console input.

    Returns:
        False when the user asked to quit, True otherwise.
    """
    line = line.strip()
    if not line:
        return True

    if not line.startswith("/"):
        await client.send_chat(line)
        return True

    command, _, arg = line[1:].partition(" ")
    arg = arg.strip()

    if command == "call":
        await client.start_call()
    elif command == "end":
        await client.end_call()
    elif command == "mute":
        client.mute()
    elif command == "unmute":
        client.unmute()
    elif command == "file":
        if not arg:
            client.presentation.show_notice("Usage: /file PATH")
        else:
            try:
                await client.send_file(arg)
            except FileNotFoundError as e:
                client.presentation.show_notice(str(e))
    elif command == "name":
        client.set_username(arg)
    elif command == "quit":
        return False
    elif command == "help":
        click.echo(HELP_TEXT)
    else:
        client.presentation.show_notice(f"Unknown command: /{command} (try /help)")
    return True


async def _console_loop(client: CallClient) -> None:
    session = PromptSession()
    with patch_stdout():
        while True:
            try:
                line = await session.prompt_async(f"{client.username}> ")
            except (EOFError, KeyboardInterrupt):
                break
            if not await handle_command(client, line):
                break


async def run_call_async(client: CallClient) -> None:
    """Run the signaling listener and the console until either one stops."""
    await client.channel.connect()
    click.echo(f"Joined room '{client.room}' as {client.username}. Type /help for commands.")

    listener = asyncio.create_task(client.channel.listen())
    console = asyncio.create_task(_console_loop(client))
    try:
        await asyncio.wait({listener, console}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        await client.close()
        console.cancel()
        await asyncio.gather(listener, console, return_exceptions=True)


def run_call(
    server_url: str,
    room: str,
    username: str = "You",
    media_file: Optional[str] = None,
    media_format: Optional[str] = None,
    ice_servers: Optional[List[str]] = None,
    answer_with_media: bool = False,
    downloads_dir: str = "downloads",
) -> None:
    """Standalone function to run the console call client with CLI arguments.

    Args:
        server_url: Relay websocket URL.
        room: Room to join.
        username: Local display name.
        media_file: Camera device or media file; None uses the default camera.
        media_format: FFmpeg input format for media_file.
        ice_servers: STUN/TURN URLs.
        answer_with_media: Send local media when answering calls.
        downloads_dir: Where received files are saved.
    """
    logging.basicConfig(level=logging.INFO)

    client = CallClient(
        url=server_url,
        room=room,
        username=username,
        media_source=MediaSource(file=media_file, format=media_format),
        presentation=ConsolePresentation(downloads_dir=downloads_dir),
        ice_servers=ice_servers,
        answer_with_media=answer_with_media,
    )

    try:
        asyncio.run(run_call_async(client))
    except KeyboardInterrupt:
        logger.info("Client interrupted by user. Shutting down...")
    except Exception as e:
        logger.error(f"Client error: {e}")
        raise

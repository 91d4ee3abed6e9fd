"""Presentation sinks that the call client drives.

A sink stands in for the UI: video elements, the chat box, the username
labels and the call control buttons. ``ConsolePresentation`` renders to the
terminal; ``NullPresentation`` discards everything.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

import click
from aiortc.contrib.media import MediaBlackhole
from loguru import logger

from rtc_videochat.client.file_share import save_received_file
from rtc_videochat.exceptions import ProtocolError

REMOTE_LABEL_DEFAULT = "Remote User"

# Controls shown only while a call is active. "unmute" replaces "mute" while muted.
CALL_CONTROLS = ("end", "send_file", "mute", "unmute")


class PresentationSink(Protocol):
    def attach_local_stream(self, stream: Any) -> None: ...

    def attach_remote_stream(self, stream: Any) -> None: ...

    def show_control(self, name: str, visible: bool) -> None: ...

    def append_chat_entry(self, username: str, message: str, sent: bool = False) -> None: ...

    def append_file_entry(
        self, username: str, filename: str, data_url: str, sent: bool = False
    ) -> None: ...

    def set_remote_username(self, username: str) -> None: ...

    def show_notice(self, message: str) -> None: ...

    def reset_presentation(self) -> None: ...


class NullPresentation:
    """Sink that ignores every update."""

    def attach_local_stream(self, stream):
        pass

    def attach_remote_stream(self, stream):
        pass

    def show_control(self, name, visible):
        pass

    def append_chat_entry(self, username, message, sent=False):
        pass

    def append_file_entry(self, username, filename, data_url, sent=False):
        pass

    def set_remote_username(self, username):
        pass

    def show_notice(self, message):
        pass

    def reset_presentation(self):
        pass


@dataclass
class ChatEntry:
    """One line of the chat log."""

    kind: str  # "chat" or "file"
    username: str
    text: str
    sent: bool = False
    path: Optional[Path] = None


class ConsolePresentation:
    """Renders the call to the terminal.

    Remote tracks are drained into ``MediaBlackhole`` sinks so the media
    pipeline keeps flowing; received files are written to ``downloads_dir``.
    """

    def __init__(
        self,
        downloads_dir: str = "downloads",
        echo: Callable[[str], None] = click.echo,
    ):
        self.downloads_dir = Path(downloads_dir)
        self.echo = echo

        self.remote_label = REMOTE_LABEL_DEFAULT
        self.entries: List[ChatEntry] = []
        self.controls: Dict[str, bool] = {name: False for name in CALL_CONTROLS}
        self.local_stream: Any = None
        self.remote_stream: Any = None

        self._sinks: Dict[Any, MediaBlackhole] = {}
        self._tasks: Set[asyncio.Task] = set()

    def attach_local_stream(self, stream):
        self.local_stream = stream
        if stream is not None:
            kinds = ", ".join(track.kind for track in stream.get_tracks())
            self.echo(f"* Local media ready ({kinds})")

    def attach_remote_stream(self, stream):
        self.remote_stream = stream
        if stream is None:
            return
        for track in stream.get_tracks():
            if track in self._sinks:
                continue
            sink = MediaBlackhole()
            sink.addTrack(track)
            self._sinks[track] = sink
            self._spawn(sink.start())
            self.echo(f"* Receiving remote {track.kind}")

    def show_control(self, name, visible):
        self.controls[name] = visible
        logger.debug(f"Control {name} {'shown' if visible else 'hidden'}")

    def append_chat_entry(self, username, message, sent=False):
        self.entries.append(ChatEntry(kind="chat", username=username, text=message, sent=sent))
        if not sent:
            self.echo(f"{username}: {message}")

    def append_file_entry(self, username, filename, data_url, sent=False):
        entry = ChatEntry(kind="file", username=username, text=filename, sent=sent)
        if not sent:
            try:
                entry.path = save_received_file(data_url, filename, self.downloads_dir)
            except (ProtocolError, OSError) as e:
                logger.warning(f"Could not save file {filename} from {username}: {e}")
                self.show_notice(f"Received an unreadable file from {username}")
                return
            self.echo(f"{username} sent {filename} (saved to {entry.path})")
        self.entries.append(entry)

    def set_remote_username(self, username):
        self.remote_label = username or REMOTE_LABEL_DEFAULT
        self.echo(f"* Connected with {self.remote_label}")

    def show_notice(self, message):
        self.echo(click.style(f"! {message}", fg="red"))

    def reset_presentation(self):
        self.local_stream = None
        self.remote_stream = None
        self.remote_label = REMOTE_LABEL_DEFAULT
        self.entries.clear()
        for name in CALL_CONTROLS:
            self.controls[name] = False
        for sink in self._sinks.values():
            self._spawn(sink.stop())
        self._sinks.clear()
        self.echo("* Call ended")

    def _spawn(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

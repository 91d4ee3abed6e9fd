"""Local media acquisition backed by aiortc's MediaPlayer."""

import platform
from typing import Any, List, Optional

from aiortc.contrib.media import MediaPlayer
from loguru import logger

from rtc_videochat.exceptions import MediaAcquisitionError


class MediaStream:
    """An ordered collection of media tracks.

    Used both for the local camera/microphone stream and for the tracks
    received from the remote peer.
    """

    def __init__(self, tracks: Optional[List[Any]] = None, player: Any = None):
        self._tracks: List[Any] = list(tracks or [])
        self.player = player

    def get_tracks(self) -> List[Any]:
        return list(self._tracks)

    def get_audio_tracks(self) -> List[Any]:
        return [track for track in self._tracks if track.kind == "audio"]

    def get_video_tracks(self) -> List[Any]:
        return [track for track in self._tracks if track.kind == "video"]

    def add_track(self, track: Any) -> None:
        if track not in self._tracks:
            self._tracks.append(track)

    def stop(self) -> None:
        """Stop every track in the stream."""
        for track in self._tracks:
            track.stop()


def default_device() -> tuple:
    """Return the (file, format, options) of the default camera for this OS."""
    options = {"framerate": "30", "video_size": "640x480"}
    system = platform.system()
    if system == "Darwin":
        return "default:default", "avfoundation", options
    if system == "Windows":
        return "video=Integrated Camera", "dshow", options
    return "/dev/video0", "v4l2", options


class MediaSource:
    """Opens a camera (or a media file) and exposes it as a MediaStream.

    Args:
        file: Device name or media file path. Defaults to the OS camera.
        format: FFmpeg input format (``v4l2``, ``avfoundation``, ...). Ignored
            for plain files when None.
        options: FFmpeg input options.
        loop: Loop media files instead of ending the stream.
    """

    def __init__(
        self,
        file: Optional[str] = None,
        format: Optional[str] = None,
        options: Optional[dict] = None,
        loop: bool = False,
    ):
        if file is None:
            file, format, default_options = default_device()
            options = options if options is not None else default_options
        self.file = file
        self.format = format
        self.options = options or {}
        self.loop = loop

    async def acquire(self) -> MediaStream:
        """Open the source.

        Raises:
            MediaAcquisitionError: If the device cannot be opened or provides
                neither audio nor video.
        """
        logger.info(f"Opening media source {self.file} (format: {self.format})")
        try:
            player = MediaPlayer(
                self.file, format=self.format, options=self.options, loop=self.loop
            )
        except Exception as e:
            raise MediaAcquisitionError(f"Could not open media source {self.file}: {e}") from e

        tracks = [track for track in (player.audio, player.video) if track is not None]
        if not tracks:
            raise MediaAcquisitionError(f"Media source {self.file} has no audio or video")

        logger.info(f"Acquired local media: {', '.join(track.kind for track in tracks)}")
        return MediaStream(tracks, player=player)

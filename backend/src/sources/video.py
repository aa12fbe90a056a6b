"""Video source — a looping, muted PyAV stream sampled at its clock position."""

import logging

import av
import numpy as np

from sources.base import SourceFrame
from video.clock import PlaybackClock
from video.reader import VideoReader

logger = logging.getLogger(__name__)


class VideoSource(SourceFrame):
    kind = "video"

    def __init__(self, path: str, clock: PlaybackClock | None = None):
        super().__init__()
        self.path = path
        self.clock = clock
        self.reader: VideoReader | None = None
        self._frame: np.ndarray | None = None
        self._frame_index: int = -1

    @property
    def width(self) -> int:
        return 0 if self.reader is None else self.reader.width

    @property
    def height(self) -> int:
        return 0 if self.reader is None else self.reader.height

    @property
    def frame_index(self) -> int:
        return self._frame_index

    @property
    def is_playing(self) -> bool:
        return self.clock is not None and self.clock.is_playing

    def load(self) -> bool:
        """Open the stream and decode the first frame. Fires ``ready`` on success."""
        try:
            self.reader = VideoReader(self.path)
            self._frame = self.reader.decode_frame(0)
        except (av.error.FFmpegError, OSError, IndexError) as e:
            logger.warning("Video load failed: %s", type(e).__name__)
            self.close()
            return False
        self._frame_index = 0
        if self.clock is None:
            self.clock = PlaybackClock(fps=self.reader.fps)
        else:
            self.clock.set_fps(self.reader.fps)
        self.ready.fire()
        return True

    def play(self) -> bool:
        if self.reader is None or self.clock is None:
            return False
        self.clock.start()
        return True

    def pause(self):
        if self.clock is not None:
            self.clock.pause()

    def _wrap(self, index: int) -> int:
        count = self.reader.frame_count
        return index % count if count > 0 else index

    def read_pixels(self) -> np.ndarray:
        if self.reader is None or self._frame is None:
            raise RuntimeError("video not loaded")

        target = self._wrap(self.clock.target_frame_index)
        if target == self._frame_index:
            return self._frame

        try:
            self._frame = self.reader.decode_frame(target)
        except IndexError:
            # Container reported more frames than it holds; loop from the top
            self.clock.reset()
            target = 0
            self._frame = self.reader.decode_frame(0)
        self._frame_index = target
        return self._frame

    def describe(self) -> dict:
        info = super().describe()
        if self.clock is not None:
            info["clock"] = self.clock.sync_state()
        return info

    def close(self):
        if self.reader is not None:
            self.reader.close()
            self.reader = None
        self._frame = None
        self._frame_index = -1

"""Video decoding via PyAV."""

import av
import numpy as np

# Forward jumps up to this many frames decode through instead of seeking
MAX_FORWARD_DECODE = 8


class VideoReader:
    def __init__(self, path: str):
        self.container = av.open(path)
        self.stream = self.container.streams.video[0]
        self.stream.thread_type = "AUTO"
        self.fps = float(self.stream.average_rate) if self.stream.average_rate else 30.0
        if self.stream.duration is not None:
            self.duration = float(self.stream.duration * self.stream.time_base)
        elif self.container.duration:
            self.duration = float(self.container.duration / av.time_base)
        else:
            self.duration = 0.0
        self.width = self.stream.width
        self.height = self.stream.height
        self.frame_count = self.stream.frames or int(self.duration * self.fps)
        self._last_decoded_index: int = -1
        self._decoder = self.container.decode(video=0)

    def decode_frame(self, frame_index: int) -> np.ndarray:
        """Decode a specific frame by index. Returns RGBA uint8 array.

        Sequential and short forward reads advance the decoder iterator;
        everything else (scrubbing, looping back to 0) seeks.
        """
        gap = frame_index - self._last_decoded_index
        if gap == 1:
            return self._decode_next_sequential(frame_index)
        if 1 < gap <= MAX_FORWARD_DECODE:
            return self._decode_forward(frame_index)
        return self._decode_with_seek(frame_index)

    def _decode_next_sequential(self, frame_index: int) -> np.ndarray:
        """Advance decoder by one frame without seeking."""
        try:
            frame = next(self._decoder)
            self._last_decoded_index = frame_index
            return frame.to_ndarray(format="rgba")
        except StopIteration:
            raise IndexError(f"Frame {frame_index} not found (end of stream)")

    def _decode_forward(self, frame_index: int) -> np.ndarray:
        """Skip ahead by decoding and discarding intermediate frames."""
        while self._last_decoded_index < frame_index - 1:
            try:
                next(self._decoder)
            except StopIteration:
                raise IndexError(f"Frame {frame_index} not found (end of stream)")
            self._last_decoded_index += 1
        return self._decode_next_sequential(frame_index)

    def _decode_with_seek(self, frame_index: int) -> np.ndarray:
        """Seek to target frame and decode."""
        time_s = frame_index / self.fps
        self.container.seek(int(time_s / self.stream.time_base), stream=self.stream)
        # Reset the decoder iterator after seeking
        self._decoder = self.container.decode(video=0)
        for frame in self._decoder:
            if frame.pts is not None:
                current_idx = int(float(frame.pts * self.stream.time_base) * self.fps)
                if current_idx >= frame_index:
                    self._last_decoded_index = frame_index
                    return frame.to_ndarray(format="rgba")
        raise IndexError(f"Frame {frame_index} not found")

    def close(self):
        self.container.close()

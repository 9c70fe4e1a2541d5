"""
Restream error types.

All errors inherit from RestreamError for easy catching.
Each carries an error_code that the HTTP layer reports verbatim.
"""


class RestreamError(Exception):
    """Base exception for all restream failures."""

    error_code = "restream_error"


class StreamNotFoundError(RestreamError):
    """Raised when a stream id is unknown to the store."""

    error_code = "not_found"

    def __init__(self, stream_id: str):
        self.stream_id = stream_id
        super().__init__(f"Stream not found: {stream_id}")


class StreamAlreadyRunningError(RestreamError):
    """Raised when starting a stream that is already live."""

    error_code = "already_running"

    def __init__(self, stream_id: str):
        self.stream_id = stream_id
        super().__init__(f"Stream already running: {stream_id}")


class DuplicateStreamKeyError(RestreamError):
    """Raised when a stream key is already in use by a live stream."""

    error_code = "duplicate_key"

    def __init__(self, stream_key: str):
        self.stream_key = stream_key
        super().__init__(f"Stream key already in use by a live stream: {mask_stream_key(stream_key)}")


class ProcessError(RestreamError):
    """Raised when the encoder process cannot be spawned, dies during
    startup, or cannot be stopped."""

    error_code = "process_error"


class VideoNotFoundError(ProcessError):
    """Raised when the source video does not exist."""

    def __init__(self, video_path: str):
        self.video_path = video_path
        super().__init__(f"Video file not found: {video_path}")


class PersistenceError(RestreamError):
    """Raised when the stream store is unavailable or a query fails."""

    error_code = "persistence_error"


class NotInitializedError(RestreamError):
    """Raised when operations are invoked before initialize()."""

    error_code = "not_initialized"

    def __init__(self):
        super().__init__("Stream manager not initialized")


def mask_stream_key(stream_key: str) -> str:
    """Keep stream keys out of logs and error messages."""
    if len(stream_key) <= 4:
        return "****"
    return f"{stream_key[:4]}****"

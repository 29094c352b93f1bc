class UpstreamUnavailable(Exception):
    """An exchange could not be reached, timed out or answered with a non-2xx status."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source

class RenderError(RuntimeError):
    pass


class FeedError(RenderError):
    """The upstream feed could not be fetched or parsed at all."""


class NoWorkersError(RenderError):
    pass


class WorkersFileError(RenderError):
    pass

"""Exception hierarchy for links2media."""


class Links2MediaError(Exception):
    """Base class for all links2media errors."""

    pass


class UnsupportedURLError(Links2MediaError):
    """URL does not belong to any supported platform."""

    pass


class DownloadError(Links2MediaError):
    """Downloaded media could not be placed in local storage."""

    pass

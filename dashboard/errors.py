from __future__ import annotations


class DataSourceError(RuntimeError):
    """
    Raised when the dashboard data cannot be loaded as a whole.
    """


class DataSourceNotConfiguredError(DataSourceError):
    """
    Raised when neither the Google Sheet nor the sales API is configured.
    """


class SheetLoadError(DataSourceError):
    """
    Raised when a required table cannot be fetched or parsed.
    """

    def __init__(self, sheet: str, cause: str) -> None:
        self.sheet = sheet
        self.cause = cause
        super().__init__(
            f'Could not load sheet "{sheet}". {cause} Make sure the sheet is shared '
            "(Anyone with the link can view) and the spreadsheet ID / sheet GID match your workbook."
        )

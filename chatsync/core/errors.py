from typing import Optional


class SyncError(Exception):
    pass


class ApiError(SyncError):

    def __init__(self, detail: str, status: Optional[int] = None) -> None:
        self.detail = detail
        self.status = status
        super().__init__(f"{detail} (status={status})" if status is not None else detail)


class ColdLoadError(SyncError):

    def __init__(self, what: str, cause: Exception | None = None) -> None:
        self.what = what
        self.cause = cause
        super().__init__(f"Failed to load {what}")


class SessionClosedError(SyncError):
    pass

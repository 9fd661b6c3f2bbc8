"""
Cloud-specific exception classes
"""

from typing import Optional

from flowshard.executor.errors import FlowshardError


class CloudError(FlowshardError):
    """Base exception for cloud errors"""
    pass


class CloudApiError(CloudError):
    """Non-success HTTP response from the cloud API"""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Cloud API request failed with status {status_code}: {message}")


class CloudPollingError(CloudError):
    """Polling an upload gave up"""

    def __init__(self, upload_id: str, status_code: Optional[int]):
        self.upload_id = upload_id
        self.status_code = status_code
        super().__init__(
            f"Failed to fetch the status of an upload {upload_id}. Status code = {status_code}"
        )

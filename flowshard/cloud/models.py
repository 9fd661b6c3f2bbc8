"""
Cloud upload status models.

Wire format of the status endpoint, parsed with pydantic. Unknown keys are
ignored so newer servers do not break older clients.
"""

from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from flowshard.executor.types import FlowStatus


class FlowResult(BaseModel):
    """Status of one flow of an upload.

    Frozen and hashable: results are deduplicated by full value.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str
    status: FlowStatus
    errors: Tuple[str, ...] = ()
    total_time: Optional[int] = Field(default=None, alias="totalTime")
    start_time: Optional[int] = Field(default=None, alias="startTime")


class UploadStatus(BaseModel):
    """Status of a whole upload."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    upload_id: str = Field(alias="uploadId")
    status: FlowStatus
    completed: bool = False
    flows: List[FlowResult] = Field(default_factory=list)
    total_time: Optional[int] = Field(default=None, alias="totalTime")
    start_time: Optional[int] = Field(default=None, alias="startTime")
    app_package_id: Optional[str] = Field(default=None, alias="appPackageId")
    was_app_launched: bool = Field(default=False, alias="wasAppLaunched")

    @classmethod
    def unknown(cls, upload_id: str) -> "UploadStatus":
        """Placeholder used when the final status could not be fetched."""
        return cls(upload_id=upload_id, status=FlowStatus.ERROR, completed=False, flows=[])

    def terminal_flows(self) -> List[FlowResult]:
        return [f for f in self.flows if f.status.is_terminal]


class RunningFlow(BaseModel):
    """Locally reconstructed view of one flow, used for reports."""

    name: str
    status: FlowStatus
    duration_ms: Optional[int] = None
    start_time: Optional[int] = None


class RunningFlows(BaseModel):
    """Locally reconstructed view of an upload."""

    flows: List[RunningFlow] = Field(default_factory=list)
    duration_ms: Optional[int] = None
    start_time: Optional[int] = None

    @classmethod
    def from_upload(cls, upload: UploadStatus) -> "RunningFlows":
        return cls(
            flows=[
                RunningFlow(
                    name=flow.name,
                    status=flow.status,
                    duration_ms=flow.total_time,
                    start_time=flow.start_time,
                )
                for flow in upload.flows
            ],
            duration_ms=upload.total_time,
            start_time=upload.start_time,
        )

    def find(self, name: str) -> Optional[RunningFlow]:
        return next((f for f in self.flows if f.name == name), None)

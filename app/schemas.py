from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _AnalysisModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class EarlyLeave(_AnalysisModel):
    occurred: bool = False
    reason: Optional[str] = None
    duration: Optional[str] = None


class Overtime(_AnalysisModel):
    occurred: bool = False
    duration: Optional[str] = None


class StaffChange(_AnalysisModel):
    occurred: bool = False
    reason: Optional[str] = None


class NightStay(_AnalysisModel):
    occurred: bool = False
    duration: Optional[str] = None


class SpecialRequest(_AnalysisModel):
    occurred: bool = False
    description: Optional[str] = None


class Incident(_AnalysisModel):
    occurred: bool = False
    severity: Optional[Literal["low", "medium", "high"]] = None
    description: Optional[str] = None

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, value):
        if isinstance(value, str):
            cleaned = value.strip().lower()
            if cleaned in {"", "null", "none"}:
                return None
            return cleaned
        return value


class BehaviourAlert(_AnalysisModel):
    occurred: bool = False
    description: Optional[str] = None


class MedicationConcern(_AnalysisModel):
    occurred: bool = False
    description: Optional[str] = None


class ShiftExceptions(_AnalysisModel):
    early_leave: EarlyLeave = Field(default_factory=EarlyLeave)
    overtime: Overtime = Field(default_factory=Overtime)
    staff_change: StaffChange = Field(default_factory=StaffChange)
    night_stay: NightStay = Field(default_factory=NightStay)
    special_request: SpecialRequest = Field(default_factory=SpecialRequest)
    incident: Incident = Field(default_factory=Incident)
    behaviour_alert: BehaviourAlert = Field(default_factory=BehaviourAlert)
    medication_concern: MedicationConcern = Field(default_factory=MedicationConcern)


class Expense(_AnalysisModel):
    type: str
    amount: Optional[float] = None
    currency: str = "AUD"
    is_reimbursement: bool = False


class RowAnalysis(_AnalysisModel):
    staff_name: Optional[str] = None
    shift_summary: str
    exceptions: ShiftExceptions = Field(default_factory=ShiftExceptions)
    expenses: List[Expense] = Field(default_factory=list)
    reimbursement_claim_explicit: bool = False
    lazy_note: bool = False


class JobCreated(BaseModel):
    jobId: str
    totalRows: int
    estimatedSeconds: int


class JobStatusOut(BaseModel):
    status: str
    progress: int
    totalRows: Optional[int] = None
    processedRows: int
    estimatedSeconds: Optional[int] = None


class JobCancelled(BaseModel):
    status: str


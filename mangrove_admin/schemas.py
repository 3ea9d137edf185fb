from typing import Any, Literal, Optional, Union
from pydantic import BaseModel, Field

ReportStatus = Literal['pending', 'accepted', 'rejected']
UserStatus = Literal['active', 'inactive']

REPORT_STATUSES = ('pending', 'accepted', 'rejected')

class Location(BaseModel):
    lat: float = 0.0
    lng: float = 0.0
    name: str = "Unknown Location"

class Report(BaseModel):
    id: Union[int, str]
    type: str = "Unknown"
    location: Location = Field(default_factory=Location)
    reporter: str = "Anonymous"
    date: str
    status: ReportStatus = 'pending'
    description: str = "No description provided"
    image: str
    points: int = 0
    reporterEmail: str = ''
    reporterPhone: str = ''

class ReporterUser(BaseModel):
    id: Union[int, str]
    name: str = ''
    email: str = ''
    phone: str = ''
    totalReports: int = 0
    acceptedReports: int = 0
    points: int = 0
    joinDate: Optional[str] = None
    status: UserStatus = 'inactive'

class MonthlyAggregate(BaseModel):
    month: str = ''
    reports: int = 0
    accepted: int = 0
    rejected: int = 0
    pending: int = 0

class ApiResult(BaseModel):
    success: bool
    data: Optional[Any] = None
    message: str = ''

class LoginReq(BaseModel):
    email: str = ''
    password: str = ''

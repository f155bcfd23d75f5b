from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ...constants import Frequency, ScrapeStatus
from .scoring import RequirementCheck


class JobRecord(BaseModel):
    id: str = Field(alias="_id")
    scrape_id: str = Field(alias="scrapeId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    title: str = ""
    company: str = ""
    location: Optional[str] = None
    description: Optional[str] = None
    url: str = ""
    canonical_url: Optional[str] = Field(default=None, alias="linkedinCanonicalUrl")
    external_job_id: Optional[str] = Field(default=None, alias="linkedinJobId")
    apply_url: Optional[str] = Field(default=None, alias="applyUrl")
    employment_type: Optional[str] = Field(default=None, alias="employmentType")
    experience_level: Optional[str] = Field(default=None, alias="experienceLevel")
    industry: Optional[str] = None
    salary: Optional[str] = None
    company_size: Optional[str] = Field(default=None, alias="companySize")
    posted_date: Optional[str] = Field(default=None, alias="postedDate")
    ai_score: Optional[float] = Field(default=None, alias="aiScore")
    ai_description: Optional[str] = Field(default=None, alias="aiDescription")
    ai_requirement_checks: Optional[List[RequirementCheck]] = Field(default=None, alias="aiRequirementChecks")
    ai_scored_at: Optional[int] = Field(default=None, alias="aiScoredAt")
    created_at: Optional[int] = Field(default=None, alias="_creationTime")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @property
    def is_scored(self) -> bool:
        return self.ai_score is not None


class ScrapeRecord(BaseModel):
    id: str = Field(alias="_id")
    user_id: str = Field(alias="userId")
    name: Optional[str] = None
    status: ScrapeStatus = ScrapeStatus.PENDING
    total_jobs: int = Field(default=0, alias="totalJobs")
    total_jobs_to_score: Optional[int] = Field(default=None, alias="totalJobsToScore")
    jobs_scored: Optional[int] = Field(default=None, alias="jobsScored")
    completed_at: Optional[int] = Field(default=None, alias="completedAt")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    recurring_config_id: Optional[str] = Field(default=None, alias="recurringJobScrapeId")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ManualTime(BaseModel):
    hour: int = Field(ge=0, le=23)
    minute: int = Field(ge=0, le=59)


class EmailSettings(BaseModel):
    """When the post-scrape summary email goes out.

    ``auto`` sends it ``delay_minutes`` after the scrape starts (immediately on
    completion when the delay is 0); ``manual`` sends it at ``manual_time``
    local time on the day of the run.
    """

    enabled: bool = True
    timing: str = "auto"
    delay_minutes: int = Field(default=5, alias="delayMinutes")
    manual_time: Optional[ManualTime] = Field(default=None, alias="manualTime")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class RecurringConfigRecord(BaseModel):
    id: str = Field(alias="_id")
    user_id: str = Field(alias="userId")
    name: str = ""
    search_url: str = Field(default="", alias="searchUrl")
    location: Optional[str] = None
    frequency: Frequency
    hour: int
    minute: int
    day_of_week: Optional[int] = Field(default=None, alias="dayOfWeek")
    day_of_month: Optional[int] = Field(default=None, alias="dayOfMonth")
    enabled: bool = True
    last_run: Optional[int] = Field(default=None, alias="lastRun")
    next_run: Optional[int] = Field(default=None, alias="nextRun")
    timer_handle: Optional[str] = Field(default=None, alias="scheduledFunctionId")
    user_email: Optional[str] = Field(default=None, alias="userEmail")
    email_settings: Optional[EmailSettings] = Field(default=None, alias="emailSettings")
    digest_enabled: Optional[bool] = Field(default=None, alias="digestEnabled")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def resolved_email_settings(self) -> EmailSettings:
        if self.email_settings is not None:
            return self.email_settings
        if self.digest_enabled is not None:
            # Older configs only carried a single on/off flag.
            return EmailSettings(enabled=self.digest_enabled, timing="auto", delay_minutes=5)
        return EmailSettings()


class UsageCounter(BaseModel):
    """One usage bucket; ``version`` 0 means the bucket does not exist yet."""

    key: str
    used: int = 0
    limit: int
    version: int = 0

    def remaining(self) -> int:
        return max(0, self.limit - self.used)


class UserLimits(BaseModel):
    daily_limit: Optional[int] = Field(default=None, alias="dailyLimit")
    monthly_limit: Optional[int] = Field(default=None, alias="monthlyLimit")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class QuotaStatus(BaseModel):
    daily_used: int
    daily_limit: int
    daily_remaining: int
    monthly_used: int
    monthly_limit: int
    monthly_remaining: int
    daily_reset_at: int
    monthly_reset_at: int
    daily_resets_in: str
    monthly_resets_in: str

    @property
    def exhausted(self) -> bool:
        return self.daily_remaining <= 0 or self.monthly_remaining <= 0


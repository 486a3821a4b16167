from datetime import date

from pydantic import BaseModel, Field, model_validator


class HolidayCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    holiday_date: date
    department: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=2000)


class HolidayOut(HolidayCreate):
    id: str

    model_config = {"from_attributes": True}


class ExamPeriodCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    start_date: date
    end_date: date
    department: str | None = Field(default=None, max_length=200)
    block_regular_classes: bool = True

    @model_validator(mode="after")
    def validate_range(self) -> "ExamPeriodCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ExamPeriodOut(ExamPeriodCreate):
    id: str

    model_config = {"from_attributes": True}

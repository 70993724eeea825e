from typing import Optional, Literal
from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


class GeocodeRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    address: Optional[str] = Field(default=None, max_length=500)
    city: Optional[str] = Field(default=None, max_length=100)
    state: Optional[str] = Field(default=None, max_length=100)
    zip: Optional[str] = Field(default=None, pattern=r"^\d{5}(-\d{4})?$")
    country: Optional[str] = Field(default=None, max_length=2)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def require_location(self):
        has_coordinates = self.lat is not None and self.lng is not None
        has_address = any([self.address, self.city, self.state, self.zip])
        if not has_coordinates and not has_address:
            raise ValueError("Must provide either coordinates (lat/lng) or address components")
        return self


class BatchGeocodeRequest(BaseModel):
    locations: list[GeocodeRequest] = Field(min_length=1, max_length=100)


class RecruitPriceRequest(BaseModel):
    recruit_id: str
    client_id: str
    discount_code: Optional[str] = None


class StageUpdateRequest(BaseModel):
    stage: Optional[str] = None
    pro_id: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    trigger_matching: bool = True


class ConsentLogRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    phone_number: str = Field(min_length=10, max_length=20)
    consent_given: bool
    consent_method: Literal["website", "sms", "phone", "verbal"]
    consent_text: str = Field(min_length=10, max_length=2000)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    double_opt_in_confirmed: bool = False


class ConsentCheckRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    phone_number: str = Field(min_length=10, max_length=20)


class OptOutRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    phone_number: str = Field(min_length=10, max_length=20)
    opt_out_method: Literal["sms", "phone", "website", "email"] = "sms"

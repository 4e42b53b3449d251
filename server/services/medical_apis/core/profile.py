# =============================================================================
# services/medical_apis/core/profile.py
# =============================================================================

from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserProfile(BaseModel):
    """Optional demographics that unlock personalized preventive guidance"""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    age: Optional[int] = Field(default=None, ge=0, le=120)
    sex: Optional[Literal["male", "female"]] = None
    pregnant: Optional[bool] = None
    sexually_active: Optional[bool] = Field(default=None, alias="sexuallyActive")
    tobacco_use: Optional[bool] = Field(default=None, alias="tobaccoUse")
    language: Literal["en", "es"] = "en"

    @property
    def has_demographics(self) -> bool:
        return self.age is not None and self.sex is not None

    def to_query_params(self) -> Dict[str, str]:
        """MyHealthfinder parameters for the attributes actually supplied"""
        params = {}
        if self.age is not None:
            params["age"] = str(self.age)
        if self.sex is not None:
            params["sex"] = self.sex
        for name, value in (("pregnant", self.pregnant),
                            ("sexuallyActive", self.sexually_active),
                            ("tobaccoUse", self.tobacco_use)):
            if value is not None:
                params[name] = "yes" if value else "no"
        if self.language == "es":
            params["Lang"] = "es"
        return params

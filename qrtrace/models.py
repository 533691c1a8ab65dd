
from pydantic import BaseModel, ConfigDict, Field, StrictInt
from typing import Optional


class SignRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    station_id: str = Field(alias="stationId")
    count: StrictInt


class ScanRequest(BaseModel):
    token: str
    # range and presence are checked by ScanRecorder
    latitude: Optional[float] = None
    longitude: Optional[float] = None

from pydantic import BaseModel, Field
from typing import Optional

class TwilioInboundMessage(BaseModel):
    """
    Structure for an SMS reply received from Twilio
    """
    message_id: str = Field(..., alias='MessageSid')
    from_number: str = Field(..., alias='From')
    to_number: str = Field(..., alias='To')
    body: str = Field('', alias='Body')

    class Config:
        populate_by_name = True
        extra = 'ignore'


class TwilioStatusCallback(BaseModel):
    """
    Delivery status callback for a message we sent
    """
    message_id: str = Field(..., alias='MessageSid')
    message_status: str = Field(..., alias='MessageStatus')
    error_code: Optional[str] = Field(None, alias='ErrorCode')
    error_message: Optional[str] = Field(None, alias='ErrorMessage')

    class Config:
        populate_by_name = True
        extra = 'ignore'

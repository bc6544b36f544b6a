from pydantic import BaseModel
from typing import Optional, List


# Request bodies. Required fields are checked by the handlers so that a
# missing value is answered with 400 and an {"error"} body.

class CreateAgentRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    companyId: Optional[str] = None


class EndCallRequest(BaseModel):
    callId: Optional[str] = None


class VapiOutboundCallRequest(BaseModel):
    phoneNumber: Optional[str] = None
    customerName: Optional[str] = None
    agentId: Optional[str] = None


# VAPI tool-call responses

class ToolResult(BaseModel):
    toolCallId: str
    result: str


class TransferDestination(BaseModel):
    type: str = "number"
    number: str
    message: str
    description: str


class ToolResponse(BaseModel):
    results: List[ToolResult]
    destination: Optional[TransferDestination] = None

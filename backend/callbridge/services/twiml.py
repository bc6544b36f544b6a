"""TwiML documents returned to Twilio by the voice webhooks.

Every builder returns the serialized ``<Response>`` document as a string.
"""
import os
from typing import Optional

from twilio.twiml.voice_response import VoiceResponse

DIAL_TIMEOUT = 30


def public_base_url() -> str:
    return os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")


def status_callback_url() -> str:
    return f"{public_base_url()}/api/twilio/call-status"


def stream_url() -> str:
    """Media-stream target consumed by the live transcription service."""
    explicit = os.getenv("TWILIO_STREAM_URL")
    if explicit:
        return explicit
    supabase_url = os.getenv("SUPABASE_URL")
    if supabase_url:
        base = supabase_url.rstrip("/").replace("https://", "wss://").replace("http://", "ws://")
        return f"{base}/functions/v1/twilio-audio-stream-v2"
    base = public_base_url().replace("https://", "wss://").replace("http://", "ws://")
    return f"{base}/twilio-audio-stream"


def _start_streams(response: VoiceResponse) -> None:
    # One leg per direction: customer audio and agent audio
    url = stream_url()
    response.start().stream(url=url, track="inbound_track", name="customer-stream")
    response.start().stream(url=url, track="outbound_track", name="agent-stream")


def connect_to_agent() -> str:
    response = VoiceResponse()
    response.say("Connecting you to our agent.", voice="alice")
    _start_streams(response)
    dial = response.dial(
        timeout=DIAL_TIMEOUT,
        record="record-from-ringing",
        recording_status_callback=status_callback_url(),
    )
    dial.client("agent")
    return str(response)


def agents_busy() -> str:
    response = VoiceResponse()
    response.say("All our agents are currently busy. Please try again later.", voice="alice")
    response.hangup()
    return str(response)


def dial_customer(number: str, caller_id: Optional[str]) -> str:
    response = VoiceResponse()
    _start_streams(response)
    dial = response.dial(
        caller_id=caller_id or None,
        timeout=DIAL_TIMEOUT,
        record="record-from-ringing",
        recording_status_callback=status_callback_url(),
        action=status_callback_url(),
    )
    dial.number(number)
    return str(response)


def missing_destination() -> str:
    response = VoiceResponse()
    response.say("No destination number provided.")
    response.hangup()
    return str(response)


def empty() -> str:
    return str(VoiceResponse())

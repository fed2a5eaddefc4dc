"""
Socket.io style text framing used by the driving simulator.
A frame "42[...]" carries an event: '4' is a websocket message and '2' an event.
"""

import json

from mpctrack.core.common.exceptions import InputError

EVENT_PREFIX = '42'
MANUAL_FRAME = '42["manual",{}]'


def has_data(frame):
    """
    Extract the JSON array of an event frame.
    Returns:
        str: The JSON text, or '' when the frame carries no data (manual mode).
    """
    if 'null' in frame:
        return ''
    start = frame.find('[')
    end = frame.rfind(']')
    if start != -1 and end != -1 and end > start:
        return frame[start:end + 1]
    return ''


def is_event(frame):
    return len(frame) > 2 and frame.startswith(EVENT_PREFIX)


def decode_event(payload):
    """
    Parse the JSON array of an event frame.
    Returns:
        tuple(str, dict): Event name and its data object.
    """
    try:
        message = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise InputError(f"Malformed event payload: {exc}") from exc
    if not isinstance(message, list) or not message or not isinstance(message[0], str):
        raise InputError("Event payload must be a JSON array starting with the event name")
    data = message[1] if len(message) > 1 else {}
    if not isinstance(data, dict):
        raise InputError(f"Event '{message[0]}' data must be a JSON object, got {type(data).__name__}")
    return message[0], data


def encode_event(name, data):
    return EVENT_PREFIX + json.dumps([name, data])

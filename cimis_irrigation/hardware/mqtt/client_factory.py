"""
Helpers for constructing the controller's MQTT client across paho-mqtt 1.x
and 2.x.

The 2.x releases add a callback API version flag; the relay handlers use the
legacy ``(client, userdata, msg)`` signature, so the factory pins VERSION1
where the enum exists and falls back silently on older installations.
"""
from __future__ import annotations

from typing import Any, Dict

import paho.mqtt.client as mqtt

from cimis_irrigation.constants import MQTT_CLIENT_ID


def _legacy_callback_api_version() -> Any | None:
    callback_api_version = getattr(mqtt, "CallbackAPIVersion", None)
    if callback_api_version is None:
        return None
    for attr in ("VERSION1", "V1"):
        if hasattr(callback_api_version, attr):
            return getattr(callback_api_version, attr)
    return None


def create_mqtt_client(
    client_id: str = MQTT_CLIENT_ID,
    username: str | None = None,
    password: str | None = None,
    **kwargs: Any,
) -> mqtt.Client:
    """
    Build the MQTT client used to command relay controllers.

    Args:
        client_id: Client identifier announced to the broker.
        username: Optional broker user; credentials are only set when given.
        password: Optional broker password.
        kwargs: Extra keyword arguments forwarded to the client constructor.
    """
    client_kwargs: Dict[str, Any] = {"client_id": client_id or ""}

    # The relay firmware talks MQTT v3.1.1.
    client_kwargs["protocol"] = kwargs.pop("protocol", getattr(mqtt, "MQTTv311", 4))
    client_kwargs.update(kwargs)

    callback_value = _legacy_callback_api_version()
    if callback_value is not None:
        client_kwargs["callback_api_version"] = callback_value

    try:
        client = mqtt.Client(**client_kwargs)
    except TypeError:
        # paho 1.x does not accept callback_api_version.
        client_kwargs.pop("callback_api_version", None)
        client = mqtt.Client(**client_kwargs)

    if username:
        client.username_pw_set(username, password)
    return client

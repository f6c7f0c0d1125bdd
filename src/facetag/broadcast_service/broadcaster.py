from __future__ import annotations

from urllib.parse import urlparse

import paho.mqtt.client as mqtt
from loguru import logger

from ..analysis.status import AnalysisStatus
from ..common.utils import now_timestamp
from .schemas import ServiceStatus, VideoStatusPayload

DEFAULT_MQTT_PORT = 1883


class AnalysisBroadcaster:
    """Publishes analysis status changes as retained MQTT messages.

    Topics:
        facetag/<port>/status                    service liveness (with last will)
        facetag/<port>/video_status/<video_id>   latest status of a video

    Without an MQTT URL every publish is a no-op.
    """

    def __init__(self, mqtt_url: str | None, port: int = 8002):
        self.mqtt_url = mqtt_url
        self.topic_base = f"facetag/{port}"
        self.client: mqtt.Client | None = None
        self.connected = False

    def init(self) -> None:
        """Connect to the broker. Connection failures are logged; publishing stays disabled."""
        if not self.mqtt_url:
            return

        parsed = urlparse(self.mqtt_url)
        host = parsed.hostname or "localhost"
        port = parsed.port or DEFAULT_MQTT_PORT

        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        if parsed.username:
            client.username_pw_set(parsed.username, parsed.password)

        offline = ServiceStatus(status="offline", timestamp=now_timestamp())
        client.will_set(
            f"{self.topic_base}/status", offline.model_dump_json(), qos=1, retain=True
        )

        try:
            logger.info(f"Connecting to MQTT broker at {host}:{port}")
            client.connect(host, port, keepalive=60)
            client.loop_start()
        except OSError as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return
        self.client = client

    def _on_connect(self, client, userdata, connect_flags, reason_code, properties):
        if reason_code == 0:
            logger.info("Connected to MQTT broker")
            self.connected = True
            online = ServiceStatus(status="online", timestamp=now_timestamp())
            client.publish(
                f"{self.topic_base}/status", online.model_dump_json(), qos=1, retain=True
            )
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")
            self.connected = False

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")
        self.connected = False

    def video_topic(self, video_id: int) -> str:
        return f"{self.topic_base}/video_status/{video_id}"

    def publish_status(self, video_id: int, status: AnalysisStatus) -> None:
        if self.client is None:
            return
        payload = VideoStatusPayload(
            video_id=video_id,
            state=status.state.value,
            status=status.display,
            progress=status.progress,
            child_count=status.child_count,
            appearance_count=status.appearance_count,
            timestamp=now_timestamp(),
        )
        topic = self.video_topic(video_id)
        logger.debug(f"Publishing video status for {video_id} to {topic}: {payload.status}")
        self.client.publish(topic, payload.model_dump_json(), qos=1, retain=True)

    def close(self) -> None:
        if self.client is None:
            return
        offline = ServiceStatus(status="offline", timestamp=now_timestamp())
        self.client.publish(
            f"{self.topic_base}/status", offline.model_dump_json(), qos=1, retain=True
        )
        self.client.loop_stop()
        self.client.disconnect()
        self.client = None
        logger.info("Disconnected from MQTT broker")

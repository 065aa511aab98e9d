import asyncio
import logging

from iot_mqtt_client import (
    BrokerSettings,
    ClientFormatter,
    ConnectionManager,
    TopicManager,
    TopicPurpose,
    configure_asyncio_compatibility,
    resolve_config,
)


handler = logging.StreamHandler()
handler.setFormatter(ClientFormatter("%(asctime)s - %(levelname)s - %(message)s"))
logging.basicConfig(level=logging.INFO, handlers=[handler])

# Settings come from the environment / a .env file (MQTT_TOPIC_PREFIX, MQTT_BROKER_HOSTNAME, ...).
# The prefix must match the one flashed into the ESP32 publishing the readings.
DEFAULT_PREFIX = "Ryan24"
TOGGLE_PERIOD = 5


async def main():
    settings = BrokerSettings.from_env()
    if not settings.namespace_prefix:
        settings = BrokerSettings.from_env(namespace_prefix=DEFAULT_PREFIX)
    config = resolve_config(settings)
    topics = TopicManager(config.namespace_prefix)

    manager = ConnectionManager(config)

    def on_connect():
        # Subscriptions are restored automatically after a reconnect, so only subscribe once.
        if not manager.subscriptions:
            for purpose in (TopicPurpose.TELEMETRY_A, TopicPurpose.TELEMETRY_B, TopicPurpose.STATUS):
                manager.subscribe(config.topic(purpose))
        manager.publish(config.topic(TopicPurpose.STATUS), "web client online")

    def on_message(topic: str, payload: str, message):
        purpose = topics.purpose_for(topic, config.topics)
        label = purpose.value if purpose else "unknown"
        # print in green text
        print(f"\033[92m[{label}] {topic}: {payload}\033[0m")

    manager.on_connect(on_connect)
    manager.on_message(on_message)
    manager.on_disconnect(lambda reason: print(f"Disconnected: {reason or 'by request'}"))
    manager.on_error(lambda error: print(f"Error: {error.detail}"))

    await manager.connect()
    print(f"Connected to {config.endpoint} as {config.client_identifier}. Toggling the LED...")

    led_on = False
    try:
        while True:
            led_on = not led_on
            manager.publish(config.topic(TopicPurpose.COMMAND), "ON" if led_on else "OFF")
            await asyncio.sleep(TOGGLE_PERIOD)
    finally:
        manager.disconnect()
        print(manager.get_status().as_dict())


if __name__ == "__main__":
    configure_asyncio_compatibility()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("Exiting...")

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable

from fastapi import FastAPI, HTTPException

from . import __version__
from .description import bridge_info
from .engine import BridgeEngine
from .mqtt_client import MqttClient, z2m_publisher
from .settings import Settings, load_settings, read_options
from .tasmota import TasmotaGateway

_LOGGER = logging.getLogger("z2m_bridge")
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())

HTTP_PORT = 8099


def _configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    for name in (
        "z2m_bridge",
        "paho",
        "uvicorn",
        "uvicorn.error",
    ):
        logging.getLogger(name).setLevel(level)

    # Access log only in debug mode.
    logging.getLogger("uvicorn.access").setLevel(logging.DEBUG if debug else logging.WARNING)


def _device_view(dev: Any) -> dict[str, Any]:
    return {
        "native_id": dev.native_id,
        "ieee_address": dev.ieee_address,
        "friendly_name": dev.display_name,
        "model": dev.model,
        "firmware": dev.firmware,
        "relay_count": dev.capability.relay_count,
        "endpoints": list(dev.capability.endpoints),
        "channels": list(dev.capability.channels),
        "states": [None if s is None else ("ON" if s else "OFF") for s in dev.last_states],
        "available": dev.last_available,
    }


def create_app(settings: Settings | None = None, mqtt: MqttClient | None = None) -> FastAPI:
    api = FastAPI(title="Tasmota Z2M bridge", version=__version__)

    if settings is None:
        settings = load_settings(read_options())
    api.state.settings = settings
    _configure_logging(settings.debug)

    if mqtt is None:
        mqtt = MqttClient(
            host=settings.mqtt.host,
            port=settings.mqtt.port,
            username=settings.mqtt.username,
            password=settings.mqtt.password,
            client_id=settings.mqtt.client_id,
        )
    api.state.mqtt = mqtt

    gateway = TasmotaGateway(mqtt, settings.tasmota)
    api.state.gateway = gateway

    base = settings.bridge.base_topic
    engine = BridgeEngine(
        publish=z2m_publisher(mqtt, base),
        send_native=gateway.send_power,
        cfg=settings.bridge,
        debug=settings.debug,
    )
    api.state.engine = engine
    api.state.start_task = None

    @api.on_event("startup")
    async def _startup() -> None:
        loop = asyncio.get_running_loop()

        # paho delivers on its own thread: hop every event onto the loop so
        # handlers run one at a time.
        def _on_loop(fn: Callable[..., Any]) -> Callable[..., None]:
            def _cb(*args: Any) -> None:
                loop.call_soon_threadsafe(fn, *args)

            return _cb

        gateway.add_discovery_listener(_on_loop(engine.on_discovery))
        gateway.add_state_listener(_on_loop(engine.on_state_change))
        gateway.add_availability_listener(_on_loop(engine.on_availability_change))
        gateway.start()

        def _on_set(topic: str, payload: str) -> None:
            # topic: base/<friendly_name>/set[/<property>]
            parts = topic[len(base) + 1 :].split("/")
            if len(parts) == 2 and parts[1] == "set":
                loop.call_soon_threadsafe(engine.on_command, parts[0], payload)
            elif len(parts) == 3 and parts[1] == "set":
                loop.call_soon_threadsafe(engine.on_property_command, parts[0], parts[2], payload)

        mqtt.subscribe(f"{base}/+/set", _on_set)
        mqtt.subscribe(f"{base}/+/set/+", _on_set)
        _LOGGER.info("Emulating Zigbee2MQTT on topic: %s", base)

        def _on_mqtt_connect() -> None:
            # Broker restart can drop retained messages if persistence is off.
            def _republish() -> None:
                if engine.initialized:
                    engine.bridge.publish_topology()

            loop.call_soon_threadsafe(_republish)

        mqtt.set_connect_handler(_on_mqtt_connect)
        _LOGGER.info("Starting MQTT client %s:%s", settings.mqtt.host, settings.mqtt.port)
        mqtt.connect()

        async def _delayed_start() -> None:
            # Give retained discovery messages time to arrive before the first bridge/devices.
            await asyncio.sleep(settings.bridge.startup_delay_s)
            engine.start(settings.bridge.refresh_interval_s)

        api.state.start_task = asyncio.create_task(_delayed_start())

    @api.on_event("shutdown")
    async def _shutdown() -> None:
        _LOGGER.info("Bridge stopping...")
        task = api.state.start_task
        if task is not None and not task.done():
            task.cancel()
        try:
            await engine.shutdown()
        finally:
            mqtt.disconnect()
        _LOGGER.info("Bridge stopped")

    @api.get("/health")
    async def health():
        st = mqtt.status()
        return {
            "status": "ok",
            "mqtt_connected": st.connected,
            "mqtt_error": st.last_error,
            "initialized": engine.initialized,
        }

    @api.get("/api/devices")
    async def list_devices():
        return [_device_view(d) for d in engine.registry.devices()]

    @api.get("/api/devices/{name}")
    async def get_device(name: str):
        dev = engine.registry.find_by_display_name(name)
        if dev is None:
            raise HTTPException(status_code=404, detail="Device not found")
        return {**_device_view(dev), "description": dev.description}

    @api.get("/api/bridge")
    async def bridge():
        return {
            "info": bridge_info(settings.bridge, debug=settings.debug),
            "device_count": len(engine.registry),
            "periodic_refresh": engine.bridge.periodic_running,
        }

    return api


def main() -> None:
    import uvicorn

    app = create_app()
    port = int(os.environ.get("Z2M_BRIDGE_PORT") or HTTP_PORT)
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")


if __name__ == "__main__":
    main()

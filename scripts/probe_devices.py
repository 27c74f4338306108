import asyncio
import logging
import sys

from droidbridge.bridge.commands import PROP_API_LEVEL, PROP_CPU_ABI, CommandChannel
from droidbridge.bridge.lifecycle import BridgeContext
from droidbridge.bridge.registry import DeviceRegistry
from droidbridge.config import get_settings

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger("probe_devices")

# Usage: python scripts/probe_devices.py [package.name]
# Needs ANDROID_HOME pointing at an SDK with platform-tools installed.


async def main():
    settings = get_settings()
    package = sys.argv[1] if len(sys.argv) > 1 else None

    bridge = BridgeContext(settings)
    await bridge.connect()
    try:
        registry = DeviceRegistry(bridge)
        commands = CommandChannel(bridge, timeout=10)

        logger.info(f"{len(bridge.devices())} device(s) attached")
        for device in bridge.devices():
            logger.info(f" - {device.serial} state={device.state.value}")

        for device in registry.online_devices():
            abi = await commands.get_property(device, PROP_CPU_ABI)
            api_level = await commands.get_property(device, PROP_API_LEVEL)
            size = await commands.screen_size(device)
            logger.info(f"{device.serial}: abi={abi} api={api_level} size={size or '?'}")
            if package:
                version = await commands.app_version(device, package)
                logger.info(f"{device.serial}: {package} version={version or 'not installed'}")
    finally:
        await bridge.disconnect()


if __name__ == "__main__":
    asyncio.run(main())

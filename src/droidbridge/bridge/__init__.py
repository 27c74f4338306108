"""adb transport, device registry, command channel and port forwarding."""

"""Android device fleet bridge: device tracking, shell channel and service bootstrap."""
